"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .authorization import ReceiptAuthorizer
from .owner_authorization import OwnerOrAdminAuthorizer

__all__ = ['ReceiptAuthorizer', 'OwnerOrAdminAuthorizer']
