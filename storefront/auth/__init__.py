"""Authentication package."""
from .session import AuthSessionGuard, Session, SessionReadiness

__all__ = [
    "AuthSessionGuard",
    "Session",
    "SessionReadiness",
]
