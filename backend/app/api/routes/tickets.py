"""
Ticket holders' view and check-in at the door.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import CurrentUser, get_current_user, get_current_user_id
from app.db.session import get_db
from app.schemas.ticket import TicketCheckIn, TicketResponse
from app.services.interfaces.authorization import ReceiptAuthorizer
from app.services.strategy_factory import get_authorizer
from app.services.ticket_service import check_in, list_user_tickets

router = APIRouter(prefix="/tickets", tags=["Tickets"])


@router.get("/mine", response_model=list[TicketResponse])
async def list_my_tickets(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Tickets issued to the caller, newest first."""
    return await list_user_tickets(db, user_id)


@router.post("/{ticket_code}/check-in", response_model=TicketResponse)
async def check_in_ticket(
    ticket_code: str,
    body: TicketCheckIn,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    authorizer: ReceiptAuthorizer = Depends(get_authorizer),
):
    """Admit the holder once; a second scan is rejected with `invalid_ticket`."""
    return await check_in(db, ticket_code, body.verification_hash, user, authorizer)
