"""
REST API for registered models.
"""

from .auth import decode_bearer_token, get_principal, principal_from_claims
from .router import build_model_router, create_rest_router, get_registry, install_error_handlers

__all__ = [
    "build_model_router",
    "create_rest_router",
    "decode_bearer_token",
    "get_principal",
    "get_registry",
    "install_error_handlers",
    "principal_from_claims",
]
