"""
Sales - single product sales and multi-item checkouts.

A checkout is a list of CartItems, each either a whole-unit product sale or
an ml pour from an opened bottle. Items are sold one after the other and
each is committed on its own: one item running out of stock does not undo
the others, it is reported back next to the items that sold.
"""
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Union, Dict, Any

from sqlalchemy.orm import Session

from vapestock.models import Product, Transaction, normalize_payment_method
from vapestock.exceptions import (
    VapeStockError, InvalidOperationError, InsufficientStockError, InsufficientVolumeError,
    NoItemsSoldError
)
from vapestock.services.inventory_service import decrement_units
from vapestock.services.bottle_service import sell_ml
from vapestock.services.event_service import emit_event, SALE_COMPLETED, STOCK_UPDATED, BOTTLE_UPDATED
from vapestock.services.session_service import SessionRegistry, Seller, get_session_registry, ensure_same_shop
from vapestock.blueprints.metrics import record_sale, record_rejection
from vapestock.utils.money import round_currency, line_total
from vapestock.utils.quantities import parse_positive_int

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


# =====================================================
# CART ITEMS
# =====================================================

@dataclass(frozen=True)
class ProductItem:
    """Whole units of a product."""
    product_id: int
    qty: int = 1
    price: Optional[int] = None
    original_price: Optional[int] = None
    cart_price: Optional[int] = None
    label: Optional[str] = None


@dataclass(frozen=True)
class MlItem:
    """A pour from an opened bottle."""
    opened_bottle_id: int
    ml_amount: int
    price: Optional[int] = None
    original_price: Optional[int] = None
    cart_price: Optional[int] = None
    label: Optional[str] = None


CartItem = Union[ProductItem, MlItem]


def parse_cart_item(data: Dict[str, Any]) -> CartItem:
    """
    Build a CartItem from a checkout payload entry.

    Entries with type 'ml' and an openedBottleId are pours, everything else is
    a product sale. Accepts camelCase (wire) or snake_case keys.

    Raises:
        InvalidOperationError: malformed entry
    """
    if isinstance(data, (ProductItem, MlItem)):
        return data
    if not isinstance(data, dict):
        raise InvalidOperationError('Cart item must be an object')

    def pick(*keys):
        for key in keys:
            if data.get(key) is not None:
                return data[key]
        return None

    label = pick('productName', 'product_name', 'name')
    price = pick('price')
    original_price = pick('originalPrice', 'original_price')
    cart_price = pick('cartPrice', 'cart_price')

    bottle_id = pick('openedBottleId', 'opened_bottle_id')
    try:
        if data.get('type') == 'ml' and bottle_id:
            return MlItem(
                opened_bottle_id=parse_positive_int(bottle_id),
                ml_amount=parse_positive_int(pick('mlAmount', 'ml_amount')),
                price=price,
                original_price=original_price,
                cart_price=cart_price,
                label=label
            )

        product_id = pick('productId', 'product_id')
        qty = pick('qty', 'quantity')
        if product_id is None:
            raise InvalidOperationError('Cart item is missing productId')
        return ProductItem(
            product_id=parse_positive_int(product_id),
            qty=parse_positive_int(1 if qty is None else qty),
            price=price,
            original_price=original_price,
            cart_price=cart_price,
            label=label
        )
    except (TypeError, ValueError):
        raise InvalidOperationError(f'Invalid cart item: {label or data}')


def generate_checkout_id() -> str:
    """CHK-<base36 millis>-<4 random chars>, shared by every line of one checkout."""
    millis = int(time.time() * 1000)
    encoded = ''
    while millis:
        millis, rem = divmod(millis, 36)
        encoded = _BASE36[rem] + encoded
    suffix = ''.join(secrets.choice(_BASE36) for _ in range(4))
    return f'CHK-{encoded or "0"}-{suffix}'


# =====================================================
# SINGLE SALE
# =====================================================

def sell_product(
    session: Session,
    shop: str,
    seller: Seller,
    product_id: int,
    quantity=1,
    price=None,
    original_price=None,
    cart_price=None,
    checkout_id: Optional[str] = None,
    customer: Optional[dict] = None,
    payment_method=None,
    registry: Optional[SessionRegistry] = None,
    emit: bool = True
) -> Transaction:
    """
    Sell whole units of a product.

    Stock is taken with a single conditional UPDATE; the Transaction is
    written in the same database transaction, and the session registry is
    only touched once that commit succeeded. A failed sale changes nothing.

    Args:
        price: Per-unit price entered at checkout; catalog price when None

    Raises:
        InvalidOperationError: quantity not a whole number >= 1, negative price, bad payment method
        InsufficientStockError: product missing or not enough units
        UnauthorizedError: the seller's session belongs to another shop
    """
    ensure_same_shop(seller.shop, shop)
    try:
        quantity = parse_positive_int(quantity)
    except ValueError:
        raise InvalidOperationError('Quantity must be a whole number of at least 1')

    try:
        unit_override = round_currency(price) if price is not None else None
        original_override = round_currency(original_price) if original_price else None
        cart_override = round_currency(cart_price) if cart_price is not None else None
        method = normalize_payment_method(payment_method)
    except ValueError as e:
        raise InvalidOperationError(str(e))
    if unit_override is not None and unit_override < 0:
        raise InvalidOperationError('Price cannot be negative')

    registry = registry or get_session_registry()
    customer = customer or {}

    try:
        product = decrement_units(session, product_id, quantity)

        unit_price = unit_override if unit_override is not None else product.sell_price
        total_price = line_total(unit_price, quantity)

        transaction = Transaction(
            product_id=product.id,
            product_name=product.name,
            qty=quantity,
            price_per_unit=unit_price,
            total_price=total_price,
            cost_price=product.cost_price or 0,
            original_price=original_override or product.sell_price,
            cart_price=cart_override if cart_override is not None else unit_price,
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
    except InsufficientStockError as e:
        session.rollback()
        record_rejection('insufficient_stock')
        logger.info(f"[SALES] Rejected sale of product {product_id} x{quantity}: {e.message}")
        raise
    except Exception:
        session.rollback()
        raise

    registry.update_session(seller.session_id, total_price)
    record_sale('unit', total_price)

    if emit:
        emit_event(shop, SALE_COMPLETED, {
            'soldItems': [_sold_item(transaction)],
            'totalAmount': total_price,
            'soldBy': seller.username,
        })
        emit_event(shop, STOCK_UPDATED, {'productId': product.id, 'units': product.units})

    return transaction


def _sold_item(transaction: Transaction) -> dict:
    return {
        'name': transaction.product_name,
        'qty': transaction.qty,
        'price': transaction.price_per_unit,
        'totalPrice': transaction.total_price,
        'originalPrice': transaction.original_price,
        'cartPrice': transaction.cart_price,
        'checkoutId': transaction.checkout_id,
    }


# =====================================================
# CHECKOUT
# =====================================================

@dataclass
class BulkSaleResult:
    checkout_id: str
    sold_items: List[dict] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    total_amount: int = 0
    transactions: List[Transaction] = field(default_factory=list)

    def to_dict(self):
        data = {
            'checkoutId': self.checkout_id,
            'soldItems': self.sold_items,
            'totalAmount': self.total_amount,
        }
        if self.errors:
            data['errors'] = self.errors
        return data


def sell_bulk(
    session: Session,
    shop: str,
    seller: Seller,
    items: List[Union[CartItem, dict]],
    customer: Optional[dict] = None,
    payment_method=None,
    registry: Optional[SessionRegistry] = None
) -> BulkSaleResult:
    """
    Sell a whole cart under one checkout id.

    Every item is attempted independently; failures are collected as
    messages and the item is skipped. At least one item has to sell.

    Raises:
        InvalidOperationError: empty cart or bad payment method
        NoItemsSoldError: every item failed (carries the error list)
        UnauthorizedError: the seller's session belongs to another shop
    """
    ensure_same_shop(seller.shop, shop)
    if not items:
        raise InvalidOperationError('No items to sell')
    try:
        method = normalize_payment_method(payment_method)
    except ValueError as e:
        raise InvalidOperationError(str(e))

    registry = registry or get_session_registry()
    result = BulkSaleResult(checkout_id=generate_checkout_id())
    touched_products = {}

    for raw in items:
        try:
            item = parse_cart_item(raw)
        except InvalidOperationError as e:
            result.errors.append(e.message)
            continue

        try:
            if isinstance(item, MlItem):
                sale = sell_ml(
                    session, shop, seller, item.opened_bottle_id, item.ml_amount,
                    price=item.price,
                    original_price=item.original_price,
                    cart_price=item.cart_price,
                    checkout_id=result.checkout_id,
                    customer=customer,
                    payment_method=method,
                    registry=registry,
                    emit=False
                )
                transaction = sale.transaction
                emit_event(shop, BOTTLE_UPDATED, sale.bottle.to_dict())
            elif isinstance(item, ProductItem):
                transaction = sell_product(
                    session, shop, seller, item.product_id, item.qty,
                    price=item.price,
                    original_price=item.original_price,
                    cart_price=item.cart_price,
                    checkout_id=result.checkout_id,
                    customer=customer,
                    payment_method=method,
                    registry=registry,
                    emit=False
                )
                touched_products[transaction.product_id] = transaction.product_name
            else:
                raise InvalidOperationError(f'Unsupported cart item {type(item).__name__}')
        except InsufficientStockError:
            result.errors.append(f'Insufficient stock for {item.label or "product"}')
            continue
        except InsufficientVolumeError:
            result.errors.append(f'Insufficient ML for {item.label or "opened bottle"}')
            continue
        except VapeStockError as e:
            result.errors.append(f'Error processing {item.label or "item"}: {e.message}')
            continue

        result.transactions.append(transaction)
        result.sold_items.append(_sold_item(transaction))
        result.total_amount += transaction.total_price

    if not result.sold_items:
        logger.info(f"[SALES] Checkout {result.checkout_id} sold nothing: {result.errors}")
        raise NoItemsSoldError(result.errors)

    logger.info(
        f"[SALES] Checkout {result.checkout_id} by {seller.username}: "
        f"{len(result.sold_items)} line(s), total {result.total_amount}, {len(result.errors)} error(s)"
    )

    emit_event(shop, SALE_COMPLETED, {
        'soldItems': result.sold_items,
        'totalAmount': result.total_amount,
        'soldBy': seller.username,
    })
    for product_id in touched_products:
        units = _current_units(session, product_id)
        if units is not None:
            emit_event(shop, STOCK_UPDATED, {'productId': product_id, 'units': units})

    return result


def _current_units(session: Session, product_id) -> Optional[int]:
    return session.query(Product.units).filter(Product.id == product_id).scalar()


# =====================================================
# QUERIES
# =====================================================

def get_session_transactions(session: Session, session_id: str, newest_first: bool = True) -> List[Transaction]:
    """All sale lines booked in a session."""
    order = Transaction.sold_at.desc() if newest_first else Transaction.sold_at.asc()
    tie = Transaction.id.desc() if newest_first else Transaction.id.asc()
    return (session.query(Transaction)
            .filter(Transaction.session_id == session_id)
            .order_by(order, tie)
            .all())
