from models.base import Base, async_session, engine, ensure_schema, get_session
from models.tank import OxygenTank
from models.alert import AlertRow

__all__ = [
    "Base",
    "async_session",
    "engine",
    "ensure_schema",
    "get_session",
    "OxygenTank",
    "AlertRow",
]
