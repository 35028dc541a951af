"""
Default authorization: the event owner or an admin.
"""

from app.core.security import CurrentUser
from app.services.interfaces.authorization import ReceiptAuthorizer


class OwnerOrAdminAuthorizer(ReceiptAuthorizer):
    async def can_resolve_receipt(self, user: CurrentUser, event_owner_id: str) -> bool:
        return user.is_admin or user.id == event_owner_id

    async def can_manage_event(self, user: CurrentUser, event_owner_id: str) -> bool:
        return user.is_admin or user.id == event_owner_id
