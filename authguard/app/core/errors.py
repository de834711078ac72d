# authguard/app/core/errors.py
"""
Exception types shared by the security core and the HTTP layer.

Expected outcomes (wrong code, lockout, rate limit) are returned as values.
Only collaborator failures and the final HTTP deny travel as exceptions.
"""
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from authguard.app.schemas.security import GateDecision


class AuthGuardError(Exception):
    """Base class for all AuthGuard errors."""


class CollaboratorError(AuthGuardError):
    """A store or external collaborator could not be reached or timed out."""

    def __init__(self, collaborator: str, message: str = "unavailable"):
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")


class SecurityDenied(AuthGuardError):
    """Raised by the FastAPI dependency when the gate denies a request."""

    def __init__(self, decision: "GateDecision"):
        self.decision = decision
        super().__init__(decision.body.get("error", "denied"))
