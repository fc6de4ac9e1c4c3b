"""Spending log - money paid out of the till during an open session."""
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session

from vapestock.models import Spending
from vapestock.exceptions import InvalidOperationError, SessionNotFoundError
from vapestock.services.session_service import SessionRegistry, Seller, get_session_registry, ensure_same_shop
from vapestock.utils.money import parse_amount

logger = logging.getLogger(__name__)


def add_spending(
    session: Session,
    seller: Seller,
    reason: str,
    amount,
    registry: Optional[SessionRegistry] = None,
    shop: Optional[str] = None
) -> Spending:
    """
    Record an expense against the seller's open session.

    Raises:
        InvalidOperationError: missing reason, or amount not > 0
        SessionNotFoundError: the session is not open
        UnauthorizedError: the session belongs to a shop other than `shop`
    """
    reason = (reason or '').strip()
    if not reason:
        raise InvalidOperationError('Reason and amount are required')
    try:
        amount = parse_amount(amount, allow_zero=False)
    except ValueError as e:
        raise InvalidOperationError(str(e))

    registry = registry or get_session_registry()
    active = registry.get_session(seller.session_id)
    if active is None:
        raise SessionNotFoundError('No open session to record spending against')
    ensure_same_shop(active.shop or seller.shop, shop)

    spending = Spending(
        session_id=seller.session_id,
        shopkeeper_id=str(seller.shopkeeper_id),
        shopkeeper_username=seller.username,
        reason=reason[:500],
        amount=amount,
        created_at=datetime.now(timezone.utc)
    )
    try:
        session.add(spending)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[SPENDING] {seller.username} recorded {amount} for '{reason}'")
    return spending


def list_session_spendings(session: Session, session_id: str, newest_first: bool = True) -> List[Spending]:
    order = (Spending.created_at.desc(), Spending.id.desc()) if newest_first else (Spending.created_at, Spending.id)
    return (session.query(Spending)
            .filter(Spending.session_id == session_id)
            .order_by(*order)
            .all())


def get_session_spendings(session: Session, session_id: str) -> Dict[str, Any]:
    """Spendings of a session (newest first) with their count and total."""
    spendings = list_session_spendings(session, session_id)
    return {
        'count': len(spendings),
        'totalSpending': sum(s.amount for s in spendings),
        'spendings': spendings,
    }
