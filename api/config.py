"""Service configuration from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./quickserve.db"
    REDIS_URL: str | None = None

    # OTP lifecycle
    OTP_TTL_SECONDS: int = 300
    OTP_LENGTH: int = 6
    OTP_MAX_ATTEMPTS: int = 3
    OTP_RESEND_COOLDOWN_SECONDS: int = 30
    # Dev mode logs the code instead of sending an SMS
    OTP_DEV_MODE: bool = True

    # SMS gateway (MSG91-style OTP API)
    SMS_GATEWAY_URL: str = "https://api.msg91.com/api/v5/otp"
    SMS_API_KEY: str = ""
    SMS_SENDER_ID: str = ""
    SMS_TEMPLATE_ID: str = ""
    SMS_TIMEOUT_SECONDS: float = 10.0

    # Aadhaar KYC backend
    KYC_API_URL: str = ""
    KYC_API_KEY: str = ""
    KYC_TIMEOUT_SECONDS: float = 15.0
    KYC_DEV_MODE: bool = True
    KYC_DEV_DELAY_SECONDS: float = 1.5
    AADHAAR_CHECKSUM_ENABLED: bool = False

    # In-memory flows not touched for this long are released
    FLOW_IDLE_TIMEOUT_SECONDS: float = 1800.0

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "allow"


settings = Settings()
