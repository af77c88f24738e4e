from models.account import Account, ClientSession

__all__ = ["Account", "ClientSession"]
