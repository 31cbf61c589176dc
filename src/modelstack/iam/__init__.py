"""
IAM - ACL evaluation and guard installation.
"""

from .guard import authorize, install_guards
from .service import AccessDecision, Authorizer, Policy, access_type_for

__all__ = [
    "AccessDecision",
    "Authorizer",
    "Policy",
    "access_type_for",
    "authorize",
    "install_guards",
]
