"""
Cash reconciliation of closed session reports.

Only the reconciliation columns of a report are ever written here:
cash_submitted, remaining_balance, is_reconciled and reconciled_at.

Two entry points:
- apply_reconciliation: set the cumulative cash submitted (absolute, idempotent)
- add_deposit: add one deposit server-side, safe against concurrent admin edits
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update, case
from sqlalchemy.orm import Session

from vapestock.models import SessionReport
from vapestock.exceptions import InvalidOperationError, ReportNotFoundError
from vapestock.services.event_service import emit_event, SESSION_RECONCILED
from vapestock.utils.money import parse_amount

logger = logging.getLogger(__name__)


def _parse_cash(value, allow_zero=True) -> int:
    try:
        return parse_amount(value, allow_zero=allow_zero)
    except ValueError as e:
        raise InvalidOperationError(str(e))


def _emit_reconciled(shop: Optional[str], report: SessionReport) -> None:
    if shop:
        emit_event(shop, SESSION_RECONCILED, {
            'reportId': report.id,
            'sessionId': report.session_id,
            'totalAmount': report.total_amount,
            **report.reconciliation_dict(),
        })


def apply_reconciliation(
    session: Session,
    report_id: int,
    cumulative_cash_submitted,
    shop: Optional[str] = None
) -> SessionReport:
    """
    Record the total cash submitted so far for a session.

    remaining_balance = total_amount - cash (negative means overpaid, never
    clamped) and the report is reconciled once nothing remains.

    Raises:
        ReportNotFoundError: unknown report
        InvalidOperationError: missing or negative amount
    """
    cash = _parse_cash(cumulative_cash_submitted)

    report = session.get(SessionReport, report_id)
    if not report:
        raise ReportNotFoundError(report_id)

    if cash < (report.cash_submitted or 0):
        logger.warning(
            f"[RECONCILE] Report {report_id}: cash submitted lowered "
            f"from {report.cash_submitted} to {cash}"
        )

    try:
        report.cash_submitted = cash
        report.remaining_balance = report.total_amount - cash
        report.is_reconciled = report.remaining_balance <= 0
        report.reconciled_at = datetime.now(timezone.utc)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(
        f"[RECONCILE] Report {report_id}: submitted {report.cash_submitted}, "
        f"remaining {report.remaining_balance}, reconciled={report.is_reconciled}"
    )
    _emit_reconciled(shop, report)
    return report


def add_deposit(
    session: Session,
    report_id: int,
    amount,
    shop: Optional[str] = None
) -> SessionReport:
    """
    Add one cash deposit to a report in a single UPDATE.

    Raises:
        ReportNotFoundError: unknown report
        InvalidOperationError: amount not > 0
    """
    amount = _parse_cash(amount, allow_zero=False)
    new_cash = SessionReport.cash_submitted + amount

    try:
        result = session.execute(
            update(SessionReport)
            .where(SessionReport.id == report_id)
            .values(
                cash_submitted=new_cash,
                remaining_balance=SessionReport.total_amount - new_cash,
                is_reconciled=case((SessionReport.total_amount - new_cash <= 0, True), else_=False),
                reconciled_at=datetime.now(timezone.utc)
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ReportNotFoundError(report_id)
        session.commit()
    except Exception:
        session.rollback()
        raise

    report = session.get(SessionReport, report_id, populate_existing=True)
    logger.info(
        f"[RECONCILE] Report {report_id}: deposit {amount}, submitted {report.cash_submitted}, "
        f"remaining {report.remaining_balance}"
    )
    _emit_reconciled(shop, report)
    return report
