"""
Inventory ledger - per-shop products, unit counts and investment trail.

The atomic conditional decrement in `decrement_units` is what keeps stock
from ever going negative when sales interleave; nothing else in the sale
path takes a lock.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Tuple

from sqlalchemy import update, func, or_
from sqlalchemy.orm import Session

from vapestock.models import (
    Product, ProductBarcode, ProductCategory, OpenedBottle, Investment, InvestmentType
)
from vapestock.exceptions import (
    BusinessLogicError, InvalidOperationError, InsufficientStockError, ProductNotFoundError
)
from vapestock.services.event_service import emit_event, STOCK_UPDATED
from vapestock.utils.money import round_currency
from vapestock.utils.quantities import parse_whole_number, parse_positive_int

logger = logging.getLogger(__name__)


# =====================================================
# STOCK MUTATIONS
# =====================================================

def decrement_units(session: Session, product_id: int, quantity: int) -> Product:
    """
    Atomically take `quantity` units off a product.

    Runs as a single UPDATE ... WHERE id = :id AND units >= :qty, so two
    interleaved sales can never both succeed against the same stale count.
    Does not commit.

    Raises:
        InvalidOperationError: quantity < 1
        InsufficientStockError: product missing or not enough units
    """
    try:
        quantity = parse_positive_int(quantity)
    except ValueError:
        raise InvalidOperationError('Quantity must be at least 1')

    result = session.execute(
        update(Product)
        .where(Product.id == product_id, Product.units >= quantity)
        .values(units=Product.units - quantity)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        product_name = session.query(Product.name).filter(Product.id == product_id).scalar()
        raise InsufficientStockError(product_name, quantity)

    return session.get(Product, product_id, populate_existing=True)


def increment_units(session: Session, product_id: int, quantity: int) -> Product:
    """Atomically add units to a product. Does not commit."""
    result = session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(units=Product.units + int(quantity))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ProductNotFoundError(product_id)
    return session.get(Product, product_id, populate_existing=True)


def _log_investment(
    session: Session,
    inv_type: InvestmentType,
    product: Product,
    units: int,
    cost_price: int,
    created_by: str = 'Admin',
    note: str = ''
) -> Investment:
    """Append an investment record (caller commits)."""
    investment = Investment(
        type=inv_type,
        product_id=product.id,
        product_name=product.name,
        units=units,
        cost_price=cost_price,
        total_amount=units * cost_price,
        created_by=created_by or 'Admin',
        created_at=datetime.now(timezone.utc),
        note=note or ''
    )
    session.add(investment)
    return investment


# =====================================================
# CATALOG
# =====================================================

def get_product(session: Session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if not product:
        raise ProductNotFoundError(product_id)
    return product


def list_products(
    session: Session,
    category=None,
    search: Optional[str] = None,
    in_stock_only: bool = False
) -> List[Product]:
    """List products, optionally filtered by category, text and availability."""
    query = session.query(Product)

    if category:
        query = query.filter(Product.category == ProductCategory.parse(category))

    if search:
        # Sanitize input (limit length)
        term = f'%{search.strip()[:100].lower()}%'
        query = query.filter(or_(
            func.lower(Product.name).like(term),
            func.lower(Product.brand).like(term),
            func.lower(Product.flavour).like(term)
        ))

    if in_stock_only:
        query = query.filter(or_(Product.units > 0, Product.has_opened_bottle.is_(True)))

    return query.order_by(Product.name, Product.id).all()


def find_by_barcode(session: Session, code: str) -> Product:
    """Look a product up by any of its barcodes."""
    if not code or not code.strip():
        raise InvalidOperationError('Barcode is required')

    product = (session.query(Product)
               .join(ProductBarcode)
               .filter(ProductBarcode.code == code.strip())
               .first())
    if not product:
        raise ProductNotFoundError()
    return product


def _attach_barcode(session: Session, product: Product, code: Optional[str]) -> None:
    if not code or not code.strip():
        return
    code = code.strip()
    if code in product.barcode_values:
        return

    owner = session.query(ProductBarcode).filter(ProductBarcode.code == code).first()
    if owner and owner.product_id != product.id:
        raise BusinessLogicError(f'Barcode {code} is already assigned to another product')
    product.barcodes.append(ProductBarcode(code=code))


def _find_matching_product(session: Session, name: str, brand: str, category: ProductCategory,
                           sell_price: int, flavour: str) -> Optional[Product]:
    query = session.query(Product).filter(
        func.lower(Product.name) == name.lower(),
        func.lower(Product.brand) == brand.lower(),
        Product.category == category,
        Product.sell_price == sell_price
    )
    if category == ProductCategory.E_LIQUID and flavour:
        query = query.filter(func.lower(Product.flavour) == flavour.lower())
    return query.first()


def create_product(
    session: Session,
    shop: str,
    data: Dict[str, Any],
    created_by: str = 'Admin'
) -> Tuple[Product, bool]:
    """
    Create a product, or merge into an identical one already in the catalog.

    A product matches when name, brand, category and sell price are equal
    (case-insensitive text; E-Liquids also match on flavour). Matching adds
    the units and barcode to the existing product instead of duplicating it.

    Returns:
        (product, merged)
    """
    name = (data.get('name') or '').strip()
    if not name:
        raise InvalidOperationError('Product name is required')

    try:
        category = ProductCategory.parse(data.get('category'))
        units = parse_whole_number(data.get('units') or 0)
        sell_price = round_currency(data.get('sellPrice', data.get('sell_price')) or 0)
        cost_price = round_currency(data.get('costPrice', data.get('cost_price')) or 0)
        ml_capacity = data.get('mlCapacity', data.get('ml_capacity'))
        ml_capacity = round_currency(ml_capacity) if ml_capacity not in (None, '') else None
    except ValueError as e:
        raise InvalidOperationError(str(e))

    if units < 0 or sell_price < 0 or cost_price < 0:
        raise InvalidOperationError('Units and prices cannot be negative')

    brand = (data.get('brand') or '').strip()
    is_liquid = category == ProductCategory.E_LIQUID
    flavour = (data.get('flavour') or '').strip() if is_liquid else ''
    if is_liquid and ml_capacity is not None and ml_capacity <= 0:
        raise InvalidOperationError('ML capacity must be greater than 0')

    try:
        existing = _find_matching_product(session, name, brand, category, sell_price, flavour)

        if existing:
            if units > 0:
                existing = increment_units(session, existing.id, units)
                _log_investment(session, InvestmentType.RESTOCK, existing, units,
                                existing.cost_price or 0, created_by)
            if data.get('shortDescription'):
                existing.short_description = data['shortDescription']
            _attach_barcode(session, existing, data.get('barcode'))
            session.commit()
            logger.info(f"[INVENTORY] Merged {units} units into '{existing.name}' (now {existing.units})")
            emit_event(shop, STOCK_UPDATED, {'productId': existing.id, 'units': existing.units})
            return existing, True

        product = Product(
            name=name,
            brand=brand,
            category=category,
            flavour=flavour,
            units=units,
            sell_price=sell_price,
            cost_price=cost_price,
            ml_capacity=ml_capacity if is_liquid else None,
            has_opened_bottle=False,
            short_description=data.get('shortDescription') or ''
        )
        session.add(product)
        session.flush()
        _attach_barcode(session, product, data.get('barcode'))

        if units > 0 and cost_price > 0:
            _log_investment(session, InvestmentType.PRODUCT_ADD, product, units, cost_price, created_by)

        session.commit()
        logger.info(f"[INVENTORY] Created product '{product.name}' ({product.id}) in shop {shop}")
        return product, False

    except Exception:
        session.rollback()
        raise


def restock_product(
    session: Session,
    shop: str,
    product_id: int,
    units: int,
    created_by: str = 'Admin',
    note: str = ''
) -> Product:
    """Add sealed units to a product and log the investment."""
    try:
        units = parse_positive_int(units)
    except ValueError:
        raise InvalidOperationError('Units to add must be at least 1')

    try:
        product = increment_units(session, product_id, units)
        _log_investment(session, InvestmentType.RESTOCK, product, units,
                        product.cost_price or 0, created_by, note)
        session.commit()
    except Exception:
        session.rollback()
        raise

    emit_event(shop, STOCK_UPDATED, {'productId': product.id, 'units': product.units})
    return product


def update_product(
    session: Session,
    shop: str,
    product_id: int,
    data: Dict[str, Any],
    updated_by: str = 'Admin'
) -> Product:
    """
    Update catalog fields of a product.

    A change in units is logged as an `adjustment` investment for the delta.
    """
    product = get_product(session, product_id)

    try:
        if data.get('name'):
            product.name = data['name'].strip()
        if data.get('brand') is not None:
            product.brand = data['brand'].strip()
        if data.get('category'):
            category = ProductCategory.parse(data['category'])
            if category != ProductCategory.E_LIQUID and product.has_opened_bottle:
                raise InvalidOperationError('Cannot change category of a product with an opened bottle')
            product.category = category
        if data.get('flavour') is not None:
            product.flavour = data['flavour'].strip() if product.is_e_liquid else ''
        if data.get('shortDescription') is not None:
            product.short_description = data['shortDescription']
        if data.get('sellPrice') is not None:
            product.sell_price = round_currency(data['sellPrice'])
        if data.get('costPrice') is not None:
            product.cost_price = round_currency(data['costPrice'])
        if data.get('mlCapacity') is not None:
            product.ml_capacity = round_currency(data['mlCapacity']) if product.is_e_liquid else None
        if product.sell_price < 0 or product.cost_price < 0:
            raise InvalidOperationError('Prices cannot be negative')

        if data.get('units') is not None:
            new_units = parse_whole_number(data['units'])
            if new_units < 0:
                raise InvalidOperationError('Units cannot be negative')
            delta = new_units - product.units
            if delta:
                product.units = new_units
                _log_investment(session, InvestmentType.ADJUSTMENT, product, delta,
                                product.cost_price or 0, updated_by,
                                f'Units adjusted by {delta:+d}')

        _attach_barcode(session, product, data.get('barcode'))
        session.commit()
    except ValueError as e:
        session.rollback()
        raise InvalidOperationError(str(e))
    except Exception:
        session.rollback()
        raise

    emit_event(shop, STOCK_UPDATED, {'productId': product.id, 'units': product.units})
    return product


def update_product_price(session: Session, product_id: int, sell_price) -> Tuple[Product, int]:
    """
    Update the catalog sell price (shopkeeper operation).

    Returns:
        (product, old_price)
    """
    try:
        new_price = round_currency(sell_price)
    except ValueError as e:
        raise InvalidOperationError(str(e))
    if new_price < 0:
        raise InvalidOperationError('Valid price is required')

    product = get_product(session, product_id)
    old_price = product.sell_price
    try:
        product.sell_price = new_price
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(f"[INVENTORY] Price of '{product.name}' changed from {old_price} to {new_price}")
    return product, old_price


def delete_product(
    session: Session,
    product_id: int,
    deduct_investment: bool = False,
    deleted_by: str = 'Admin'
) -> int:
    """
    Delete a product.

    Past transactions, investments and opened bottles keep their snapshots.
    When `deduct_investment` is set, the remaining stock's cost is written off
    as a negative `deduction` investment.

    Returns:
        The amount deducted from the investment total (0 if none).
    """
    product = get_product(session, product_id)
    investment_deducted = 0

    try:
        if deduct_investment and product.cost_price and product.units:
            investment_deducted = product.cost_price * product.units
            _log_investment(
                session, InvestmentType.DEDUCTION, product, -product.units,
                product.cost_price, deleted_by,
                f'Product deleted - {product.units} units removed from inventory'
            )

        session.query(OpenedBottle).filter(OpenedBottle.product_id == product.id).update(
            {OpenedBottle.product_id: None}, synchronize_session=False
        )
        session.delete(product)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[INVENTORY] Deleted product {product_id} (investment deducted: {investment_deducted})")
    return investment_deducted


# =====================================================
# INVESTMENTS
# =====================================================

def list_investments(session: Session, limit: int = 100, offset: int = 0,
                     type_filter: Optional[InvestmentType] = None) -> List[Investment]:
    query = session.query(Investment)
    if type_filter:
        query = query.filter(Investment.type == type_filter)
    return (query.order_by(Investment.created_at.desc(), Investment.id.desc())
            .limit(limit).offset(offset).all())


def get_investment_summary(session: Session) -> Dict[str, Any]:
    """Total historical investment plus breakdown per type."""
    rows = (session.query(Investment.type, func.coalesce(func.sum(Investment.total_amount), 0))
            .group_by(Investment.type).all())
    by_type = {t.value: 0 for t in InvestmentType}
    for inv_type, total in rows:
        by_type[inv_type.value] = int(total)

    stock = session.query(
        func.coalesce(func.sum(Product.units * Product.sell_price), 0),
        func.coalesce(func.sum(Product.units * Product.cost_price), 0)
    ).one()

    return {
        'totalInvestment': sum(by_type.values()),
        'byType': by_type,
        'totalStockValue': int(stock[0]),
        'totalCostValue': int(stock[1]),
    }
