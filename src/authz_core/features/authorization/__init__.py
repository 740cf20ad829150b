"""Top-level authorization decisions."""

from .service import AuthorizationRequest, AuthorizationService

__all__ = ["AuthorizationRequest", "AuthorizationService"]
