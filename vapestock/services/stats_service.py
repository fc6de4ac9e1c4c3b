"""Stats service - sales, profit and investment totals over a date range."""
import logging
from datetime import date, datetime, time, timezone
from typing import Optional, Dict, Any, Tuple

from sqlalchemy import func, case
from sqlalchemy.orm import Session

from vapestock.models import Transaction, Product, Investment
from vapestock.exceptions import InvalidOperationError

logger = logging.getLogger(__name__)

DATE_FORMAT = '%Y-%m-%d'


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD query value. Empty means unbounded."""
    if value is None or not str(value).strip():
        return None
    try:
        return datetime.strptime(str(value).strip(), DATE_FORMAT).date()
    except ValueError:
        raise InvalidOperationError(f'Invalid date {value!r}, expected YYYY-MM-DD')


def date_bounds(from_date: Optional[date], to_date: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Inclusive datetime bounds (UTC) for a day range.

    from_date starts at 00:00:00; to_date runs through 23:59:59.999999.
    """
    start = datetime.combine(from_date, time.min, tzinfo=timezone.utc) if from_date else None
    end = datetime.combine(to_date, time.max, tzinfo=timezone.utc) if to_date else None
    if start and end and start > end:
        raise InvalidOperationError('fromDate must not be after toDate')
    return start, end


def _in_range(column, start, end):
    conditions = []
    if start is not None:
        conditions.append(column >= start)
    if end is not None:
        conditions.append(column <= end)
    return conditions


def get_shop_stats(
    session: Session,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None
) -> Dict[str, Any]:
    """
    Totals for the shop between two days (both inclusive, either may be open).

    Profit per sale line is (price_per_unit - cost) * qty, where cost is the
    cost recorded on the line when positive, otherwise the product's current
    cost price, otherwise 0.

    Returns:
        dict with totalSales, totalProfit, totalInvestment, transactionCount
        and dateRange
    """
    start, end = date_bounds(from_date, to_date)
    sale_filter = _in_range(Transaction.sold_at, start, end)

    total_sales, count = (session.query(
        func.coalesce(func.sum(Transaction.total_price), 0),
        func.count(Transaction.id)
    ).filter(*sale_filter).one())

    effective_cost = case(
        (Transaction.cost_price > 0, Transaction.cost_price),
        else_=func.coalesce(Product.cost_price, 0)
    )
    line_profit = (Transaction.price_per_unit - effective_cost) * Transaction.qty
    total_profit = (session.query(func.coalesce(func.sum(line_profit), 0))
                    .select_from(Transaction)
                    .outerjoin(Product, Product.id == Transaction.product_id)
                    .filter(*sale_filter)
                    .scalar())

    total_investment = (session.query(func.coalesce(func.sum(Investment.total_amount), 0))
                        .filter(*_in_range(Investment.created_at, start, end))
                        .scalar())

    logger.debug(f"[STATS] {from_date or '-'}..{to_date or '-'}: {count} sale line(s), total {total_sales}")

    return {
        'totalSales': int(total_sales or 0),
        'totalProfit': int(total_profit or 0),
        'totalInvestment': int(total_investment or 0),
        'transactionCount': int(count or 0),
        'dateRange': {
            'fromDate': from_date.isoformat() if from_date else None,
            'toDate': to_date.isoformat() if to_date else None,
        },
    }
