"""
Opened-bottle tracker - sells E-Liquids by the ml.

Opening a bottle converts one sealed unit into a pourable one: the product
loses a unit and gains an OpenedBottle whose remaining volume is sold in
small increments until it is empty. Every guarded transition (open, pour)
is a single conditional UPDATE so concurrent requests cannot both win.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import update
from sqlalchemy.orm import Session

from vapestock.models import (
    Product, ProductCategory, OpenedBottle, BottleSale, BottleStatus, Transaction,
    normalize_payment_method
)
from vapestock.exceptions import (
    InvalidOperationError, InsufficientVolumeError, NoStockError, AlreadyOpenError,
    ProductNotFoundError, BottleNotFoundError
)
from vapestock.services.event_service import emit_event, BOTTLE_OPENED, BOTTLE_UPDATED
from vapestock.services.session_service import SessionRegistry, Seller, get_session_registry, ensure_same_shop
from vapestock.blueprints.metrics import record_sale, record_rejection
from vapestock.utils.money import ml_price, round_currency
from vapestock.utils.quantities import parse_positive_int

logger = logging.getLogger(__name__)


@dataclass
class MlSaleResult:
    """Outcome of pouring ml from an opened bottle."""
    bottle: OpenedBottle
    transaction: Transaction
    ml_sold: int
    emptied: bool

    def to_dict(self):
        return {
            'name': self.transaction.product_name,
            'qty': 1,
            'mlSold': self.ml_sold,
            'price': self.transaction.total_price,
            'originalPrice': self.transaction.original_price,
            'cartPrice': self.transaction.cart_price,
            'checkoutId': self.transaction.checkout_id,
            'openedBottleId': self.bottle.id,
            'remainingMl': self.bottle.remaining_ml,
            'status': self.bottle.status.value,
        }


def calculate_ml_price(product: Optional[Product], ml_amount: int) -> int:
    """Catalog price of `ml_amount` ml, proportional to the sealed bottle price."""
    if not product or not product.ml_capacity:
        return 0
    return ml_price(product.sell_price, product.ml_capacity, ml_amount)


def get_opened_bottle(session: Session, bottle_id: int) -> OpenedBottle:
    bottle = session.get(OpenedBottle, bottle_id)
    if not bottle:
        raise BottleNotFoundError(bottle_id)
    return bottle


def list_opened_bottles(session: Session, status=None) -> List[OpenedBottle]:
    """All opened bottles, newest first, optionally filtered by status ('open' / 'empty')."""
    query = session.query(OpenedBottle)
    if status:
        status = status if isinstance(status, BottleStatus) else BottleStatus(str(status).lower())
        query = query.filter(OpenedBottle.status == status)
    return query.order_by(OpenedBottle.opened_at.desc(), OpenedBottle.id.desc()).all()


def open_bottle(session: Session, shop: str, product_id: int, opened_by: str = 'Unknown') -> OpenedBottle:
    """
    Open one sealed unit of an E-Liquid for ml sales.

    Raises:
        ProductNotFoundError: unknown product
        InvalidOperationError: not an E-Liquid, or no ml capacity set
        NoStockError: no sealed units left
        AlreadyOpenError: the product already has an open bottle
    """
    product = session.get(Product, product_id)
    if not product:
        raise ProductNotFoundError(product_id)

    if product.category != ProductCategory.E_LIQUID:
        raise InvalidOperationError('Only E-Liquid products can be opened as bottles')
    if not product.ml_capacity or product.ml_capacity <= 0:
        raise InvalidOperationError(f'{product.name} has no ml capacity configured')
    if product.units <= 0:
        raise NoStockError(product.name)
    if product.has_opened_bottle:
        raise AlreadyOpenError(product.name)

    try:
        # Claim the unit and the flag in one statement
        result = session.execute(
            update(Product)
            .where(
                Product.id == product.id,
                Product.units >= 1,
                Product.has_opened_bottle.is_(False)
            )
            .values(units=Product.units - 1, has_opened_bottle=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.refresh(product)
            if product.has_opened_bottle:
                raise AlreadyOpenError(product.name)
            raise NoStockError(product.name)

        bottle = OpenedBottle(
            product_id=product.id,
            product_name=product.name,
            product_brand=product.brand or '',
            ml_capacity=product.ml_capacity,
            remaining_ml=product.ml_capacity,
            status=BottleStatus.OPEN,
            opened_by=opened_by or 'Unknown',
            opened_at=datetime.now(timezone.utc)
        )
        session.add(bottle)
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(product)
    logger.info(f"[BOTTLES] Opened {bottle.ml_capacity}ml bottle of '{product.name}' by {opened_by}")
    emit_event(shop, BOTTLE_OPENED, {
        'bottle': bottle.to_dict(),
        'productId': product.id,
        'units': product.units,
    })
    return bottle


def pour_ml(session: Session, bottle: OpenedBottle, ml_amount: int, sold_by: str) -> bool:
    """
    Atomically take `ml_amount` out of an open bottle and log it. Does not commit.

    Empties the bottle (and frees the product for a new opening) when the
    remaining volume reaches zero.

    Returns:
        True if this pour emptied the bottle.
    """
    result = session.execute(
        update(OpenedBottle)
        .where(
            OpenedBottle.id == bottle.id,
            OpenedBottle.status == BottleStatus.OPEN,
            OpenedBottle.remaining_ml >= ml_amount
        )
        .values(remaining_ml=OpenedBottle.remaining_ml - ml_amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.refresh(bottle)
        raise InsufficientVolumeError(bottle.product_name, ml_amount, bottle.remaining_ml)

    session.add(BottleSale(
        bottle_id=bottle.id,
        ml_sold=ml_amount,
        sold_by=sold_by or 'Unknown',
        sold_at=datetime.now(timezone.utc)
    ))
    session.refresh(bottle)

    emptied = False
    if bottle.remaining_ml <= 0:
        # Only the pour that drained the bottle flips it to empty
        result = session.execute(
            update(OpenedBottle)
            .where(
                OpenedBottle.id == bottle.id,
                OpenedBottle.status == BottleStatus.OPEN,
                OpenedBottle.remaining_ml <= 0
            )
            .values(remaining_ml=0, status=BottleStatus.EMPTY)
            .execution_options(synchronize_session=False)
        )
        emptied = result.rowcount == 1
        session.refresh(bottle)

    if emptied and bottle.product_id is not None:
        session.execute(
            update(Product)
            .where(Product.id == bottle.product_id)
            .values(has_opened_bottle=False)
            .execution_options(synchronize_session=False)
        )
    return emptied


def sell_ml(
    session: Session,
    shop: str,
    seller: Seller,
    opened_bottle_id: int,
    ml_amount,
    price=None,
    original_price=None,
    cart_price=None,
    checkout_id: Optional[str] = None,
    customer: Optional[dict] = None,
    payment_method=None,
    registry: Optional[SessionRegistry] = None,
    emit: bool = True
) -> MlSaleResult:
    """
    Sell `ml_amount` ml from an opened bottle.

    The price is `price` when the caller supplies one (checkout discount),
    otherwise the bottle's proportional catalog price. Produces exactly one
    Transaction (qty 1, name annotated with the ml) and one session update.

    Raises:
        InvalidOperationError: ml_amount not a whole number of at least 1
        BottleNotFoundError: unknown bottle
        InsufficientVolumeError: bottle empty or not enough ml left
        UnauthorizedError: the seller's session belongs to another shop
    """
    ensure_same_shop(seller.shop, shop)
    try:
        ml_amount = parse_positive_int(ml_amount)
    except ValueError:
        raise InvalidOperationError('Please specify a valid ML amount to sell')

    registry = registry or get_session_registry()
    customer = customer or {}
    bottle = get_opened_bottle(session, opened_bottle_id)

    if bottle.status == BottleStatus.EMPTY or ml_amount > bottle.remaining_ml:
        record_rejection('insufficient_volume')
        raise InsufficientVolumeError(bottle.product_name, ml_amount, bottle.remaining_ml)

    product = session.get(Product, bottle.product_id) if bottle.product_id else None
    catalog_price = calculate_ml_price(product, ml_amount)

    try:
        sale_price = round_currency(price) if price is not None else catalog_price
        original = round_currency(original_price) if original_price else catalog_price
        cart = round_currency(cart_price) if cart_price is not None else sale_price
        method = normalize_payment_method(payment_method)
    except ValueError as e:
        raise InvalidOperationError(str(e))
    if sale_price < 0:
        raise InvalidOperationError('Price cannot be negative')

    try:
        emptied = pour_ml(session, bottle, ml_amount, seller.username)

        transaction = Transaction(
            product_id=bottle.product_id,
            product_name=f'{bottle.product_name} ({ml_amount}ml)',
            qty=1,
            price_per_unit=sale_price,
            total_price=sale_price,
            cost_price=0,
            original_price=original,
            cart_price=cart,
            checkout_id=checkout_id,
            sold_by_shopkeeper_id=str(seller.shopkeeper_id),
            sold_by=seller.username or 'Unknown',
            session_id=seller.session_id,
            sold_at=datetime.now(timezone.utc),
            customer_name=customer.get('name') or '',
            customer_phone=customer.get('phone') or '',
            customer_email=customer.get('email') or '',
            payment_method=method
        )
        session.add(transaction)
        session.commit()
    except InsufficientVolumeError:
        session.rollback()
        record_rejection('insufficient_volume')
        raise
    except Exception:
        session.rollback()
        raise

    registry.update_session(seller.session_id, sale_price)
    record_sale('ml', sale_price)

    if emptied:
        logger.info(f"[BOTTLES] Bottle {bottle.id} of '{bottle.product_name}' is now empty")

    if emit:
        emit_event(shop, BOTTLE_UPDATED, bottle.to_dict())

    return MlSaleResult(bottle=bottle, transaction=transaction, ml_sold=ml_amount, emptied=emptied)


def delete_opened_bottle(session: Session, bottle_id: int, force: bool = False) -> None:
    """
    Delete an opened bottle record.

    Empty bottles can always be removed. Removing a bottle that is still open
    requires `force` and frees the product for a new opening.
    """
    bottle = get_opened_bottle(session, bottle_id)

    if bottle.is_open and not force:
        raise InvalidOperationError('Bottle still has ml left. Use force to delete it anyway.')

    try:
        if bottle.is_open and bottle.product_id is not None:
            session.execute(
                update(Product)
                .where(Product.id == bottle.product_id)
                .values(has_opened_bottle=False)
                .execution_options(synchronize_session=False)
            )
        session.delete(bottle)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"[BOTTLES] Deleted bottle {bottle_id} (forced={force})")
