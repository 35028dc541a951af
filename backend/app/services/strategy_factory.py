"""
Authorization strategy factory.
Routes depend on `get_authorizer`; tests and deployments can override it.
"""

from typing import Optional

from app.services.interfaces.authorization import ReceiptAuthorizer
from app.services.interfaces.owner_authorization import OwnerOrAdminAuthorizer


def get_authorizer_strategy() -> ReceiptAuthorizer:
    return OwnerOrAdminAuthorizer()


# Singleton instance
_authorizer: Optional[ReceiptAuthorizer] = None


def get_authorizer() -> ReceiptAuthorizer:
    """Get authorization strategy singleton."""
    global _authorizer
    if _authorizer is None:
        _authorizer = get_authorizer_strategy()
    return _authorizer
