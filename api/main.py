"""
QuickServe Onboarding — FastAPI Backend
Role selection, phone OTP, Aadhaar KYC and profile setup for the marketplace client.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from db.database import init_models, make_engine, make_session_factory
from routers import onboarding
from services.directory import SqlAccountRepository
from services.flow_registry import FlowRegistry
from services.identity import IdentityVerificationService, build_id_backend
from services.otp import OTPService, RedisChallengeStore
from services.otp_transport import build_transport

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    engine = make_engine()
    await init_models(engine)

    store = RedisChallengeStore.from_url(settings.REDIS_URL) if settings.REDIS_URL else None
    app.state.registry = FlowRegistry(
        otp=OTPService(store=store),
        transport=build_transport(),
        identity=IdentityVerificationService(build_id_backend()),
        repository=SqlAccountRepository(make_session_factory(engine)),
    )
    logger.info(
        "QuickServe onboarding API starting (otp_dev_mode=%s, kyc_dev_mode=%s, redis=%s)",
        settings.OTP_DEV_MODE, settings.KYC_DEV_MODE, bool(settings.REDIS_URL),
    )
    yield
    await app.state.registry.shutdown()
    if store is not None:
        await store.client.aclose()
    await engine.dispose()
    logger.info("QuickServe onboarding API shut down.")


app = FastAPI(
    title="QuickServe Onboarding API",
    description="Multi-step verification and account resolution for the QuickServe marketplace",
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS ───────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ────────────────────────────────────────────────
app.include_router(onboarding.router, prefix="/api/onboarding", tags=["Onboarding"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "QuickServe Onboarding API"}
