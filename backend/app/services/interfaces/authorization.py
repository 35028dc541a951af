"""
Authorization interface for organizer-side actions.
Allows swapping the entitlement source without changing business logic.
"""

from abc import ABC, abstractmethod

from app.core.security import CurrentUser


class ReceiptAuthorizer(ABC):
    """
    Decides whether a user may act for an event's organizer.

    Implementations:
    - OwnerOrAdminAuthorizer: event owner, or any user carrying the admin role
    """

    @abstractmethod
    async def can_resolve_receipt(self, user: CurrentUser, event_owner_id: str) -> bool:
        """
        Check if `user` may confirm or reject a receipt on an event owned by `event_owner_id`.
        """
        pass

    @abstractmethod
    async def can_manage_event(self, user: CurrentUser, event_owner_id: str) -> bool:
        """Check if `user` may change the event or check tickets in."""
        pass
