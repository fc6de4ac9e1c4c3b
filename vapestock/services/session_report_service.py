"""
Session reports - the durable record of a closed shopkeeper session.

`close_session` is the only place a SessionReport is created. Totals come
from the Transactions and Spendings booked under the session id, not from
the registry's running counters, so the report matches the ledger even if a
registry update was missed.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vapestock.models import (
    Transaction, Spending, SessionReport, SessionReportItem, SessionReportSpending
)
from vapestock.exceptions import (
    SessionNotFoundError, DuplicateReportError, ReportNotFoundError, InvalidOperationError
)
from vapestock.services.event_service import emit_event, SESSION_ENDED
from vapestock.services.session_service import SessionRegistry, get_session_registry, ensure_same_shop
from vapestock.services.session_store import ActiveSession
from vapestock.services.sales_service import get_session_transactions
from vapestock.services.spending_service import list_session_spendings
from vapestock.blueprints.metrics import record_session_closed

logger = logging.getLogger(__name__)


def _report_exists(session: Session, session_id: str) -> bool:
    return session.query(SessionReport.id).filter(SessionReport.session_id == session_id).first() is not None


def _item_from_transaction(position: int, t: Transaction) -> SessionReportItem:
    return SessionReportItem(
        position=position,
        transaction_id=t.id,
        product_id=t.product_id,
        product_name=t.product_name,
        qty=t.qty,
        price_per_unit=t.price_per_unit,
        total_price=t.total_price,
        cost_price=t.cost_price or 0,
        original_price=t.original_price or t.price_per_unit,
        cart_price=t.cart_price or t.price_per_unit,
        checkout_id=t.checkout_id or '',
        customer_name=t.customer_name or '',
        customer_phone=t.customer_phone or '',
        customer_email=t.customer_email or '',
        payment_method=t.payment_method.value if t.payment_method else 'Cash',
        sold_at=t.sold_at
    )


def close_session(
    session: Session,
    shop: str,
    session_id: str,
    registry: Optional[SessionRegistry] = None
) -> SessionReport:
    """
    End a shopkeeper session and persist its report.

    Raises:
        SessionNotFoundError: no open session with that id
        DuplicateReportError: a report for the session already exists
        UnauthorizedError: the session was opened in another shop
    """
    registry = registry or get_session_registry()

    active = registry.get_session(session_id)
    if active is None:
        raise SessionNotFoundError()
    ensure_same_shop(active.shop, shop)

    if _report_exists(session, session_id):
        logger.error(f"[REPORTS] Refusing to close session {session_id}: report already exists")
        raise DuplicateReportError(session_id)

    snapshot = registry.end_session(session_id)
    if snapshot is None:
        # Closed concurrently between the check and the pop
        raise SessionNotFoundError()

    try:
        transactions = get_session_transactions(session, session_id, newest_first=False)
        spendings = list_session_spendings(session, session_id, newest_first=False)

        total_amount = sum(t.total_price for t in transactions)
        report = SessionReport(
            session_id=session_id,
            shopkeeper_id=snapshot.shopkeeper_id,
            shopkeeper_username=snapshot.shopkeeper_username,
            start_time=snapshot.start_time,
            end_time=snapshot.end_time or datetime.now(timezone.utc),
            total_amount=total_amount,
            total_items_sold=sum(t.qty for t in transactions),
            total_spending=sum(s.amount for s in spendings),
            cash_submitted=0,
            remaining_balance=total_amount,
            is_reconciled=False,
            reconciled_at=None
        )
        report.items = [_item_from_transaction(i, t) for i, t in enumerate(transactions)]
        report.spendings = [
            SessionReportSpending(position=i, reason=s.reason, amount=s.amount, created_at=s.created_at)
            for i, s in enumerate(spendings)
        ]

        session.add(report)
        session.commit()
    except IntegrityError:
        session.rollback()
        registry.restore_session(snapshot)
        logger.error(f"[REPORTS] Duplicate report for session {session_id}")
        raise DuplicateReportError(session_id)
    except Exception:
        session.rollback()
        registry.restore_session(snapshot)
        raise

    if snapshot.total_amount != report.total_amount:
        logger.warning(
            f"[REPORTS] Session {session_id} registry total {snapshot.total_amount} "
            f"differs from ledger total {report.total_amount}"
        )

    logger.info(
        f"[REPORTS] Closed session {session_id} of {report.shopkeeper_username}: "
        f"{report.total_items_sold} item(s), total {report.total_amount}, spending {report.total_spending}"
    )
    record_session_closed()
    emit_event(shop, SESSION_ENDED, {'report': report.to_dict()})
    return report


# =====================================================
# ADMIN VIEWS
# =====================================================

def build_live_session_summary(session: Session, active: ActiveSession) -> Dict[str, Any]:
    """Report-shaped view of a session that is still open, built from the ledger."""
    transactions = get_session_transactions(session, active.session_id, newest_first=False)
    spendings = list_session_spendings(session, active.session_id, newest_first=False)
    sold_items = []
    for t in transactions:
        item = _item_from_transaction(len(sold_items), t).to_dict()
        sold_items.append(item)

    return {
        'id': active.session_id,
        'sessionId': active.session_id,
        'shopkeeperId': active.shopkeeper_id,
        'shopkeeperUsername': active.shopkeeper_username,
        'startTime': active.start_time.isoformat() if active.start_time else None,
        'endTime': None,
        'isActive': True,
        'soldItems': sold_items,
        'totalAmount': sum(t.total_price for t in transactions),
        'totalItemsSold': sum(t.qty for t in transactions),
        'spendings': [
            {'reason': s.reason, 'amount': s.amount,
             'createdAt': s.created_at.isoformat() if s.created_at else None}
            for s in spendings
        ],
        'totalSpending': sum(s.amount for s in spendings),
    }


def _shop_active_sessions(
    session: Session,
    registry: SessionRegistry,
    shop: Optional[str] = None
) -> List[ActiveSession]:
    """
    Open sessions that belong to this shop.

    The registry is shared by every shop. Sessions opened with a shop are
    matched on it; sessions without one are attributed to the shop whose
    ledger holds at least one sale or spending under their id.
    """
    active = registry.list_active_sessions()
    if shop:
        active = [s for s in active if s.shop in (None, shop)]
    unbound = [s.session_id for s in active if not (shop and s.shop)]
    if not unbound:
        return active
    booked = {row[0] for row in session.query(Transaction.session_id)
              .filter(Transaction.session_id.in_(unbound)).distinct()}
    booked |= {row[0] for row in session.query(Spending.session_id)
               .filter(Spending.session_id.in_(unbound)).distinct()}
    return [s for s in active if (shop and s.shop) or s.session_id in booked]


def list_live_sessions(
    session: Session,
    registry: Optional[SessionRegistry] = None,
    shop: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Report-shaped summaries of this shop's open sessions, oldest first."""
    registry = registry or get_session_registry()
    return [build_live_session_summary(session, s) for s in _shop_active_sessions(session, registry, shop)]


def list_session_reports(
    session: Session,
    page: int = 1,
    limit: int = 20,
    registry: Optional[SessionRegistry] = None,
    include_active: bool = True,
    shop: Optional[str] = None
) -> Dict[str, Any]:
    """
    Closed session reports, newest first, with live sessions prepended.

    Returns:
        dict with reports, activeSessions (count) and pagination
    """
    try:
        page = int(page)
        limit = int(limit)
    except (TypeError, ValueError):
        raise InvalidOperationError('page and limit must be integers')
    if page < 1 or limit < 1:
        raise InvalidOperationError('page and limit must be positive')

    total_count = session.query(SessionReport).count()
    reports = (session.query(SessionReport)
               .order_by(SessionReport.created_at.desc(), SessionReport.id.desc())
               .offset((page - 1) * limit)
               .limit(limit)
               .all())

    live = list_live_sessions(session, registry, shop) if include_active else []

    combined_total = total_count + len(live)
    return {
        'reports': live + [r.to_dict() for r in reports],
        'activeSessions': len(live),
        'pagination': {
            'page': page,
            'limit': limit,
            'totalCount': combined_total,
            'totalPages': (combined_total + limit - 1) // limit,
        },
    }


def format_duration(start: datetime, end: datetime) -> str:
    """Whole hours and minutes between two instants, e.g. '2h 5m'."""
    if not start or not end:
        return '0h 0m'
    minutes = max(int((end - start).total_seconds() // 60), 0)
    return f'{minutes // 60}h {minutes % 60}m'


def get_session_report(session: Session, report_id: int) -> SessionReport:
    report = session.get(SessionReport, report_id)
    if not report:
        raise ReportNotFoundError(report_id)
    return report


def get_session_report_details(session: Session, report_id: int) -> Dict[str, Any]:
    """Full report with its sold items, spendings and duration."""
    report = get_session_report(session, report_id)
    data = report.to_dict(include_items=True)
    data['duration'] = format_duration(report.start_time, report.end_time)
    data['netCashExpected'] = report.net_cash_expected
    return data


def delete_session_report(session: Session, report_id: int) -> None:
    report = get_session_report(session, report_id)
    session_id = report.session_id
    try:
        session.delete(report)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(f"[REPORTS] Deleted report {report_id} (session {session_id})")
