"""Transaction model - one immutable sale line."""
import enum

from sqlalchemy import (
    Column, BigInteger, Integer, String, DateTime, Enum, CheckConstraint
)
from sqlalchemy.sql import func

from vapestock.database import Base


class PaymentMethod(enum.Enum):
    """Payment method enum."""
    CASH = "Cash"
    EASYPAISA = "EasyPaisa"
    JAZZCASH = "JazzCash"
    CARD = "Card"
    BANK_TRANSFER = "Bank Transfer"
    OTHER = "Other"


def normalize_payment_method(value) -> PaymentMethod:
    """
    Normalize payment method input to the enum.

    Args:
        value: None, PaymentMethod, or a string such as 'cash' / 'Bank Transfer' / 'BANK_TRANSFER'

    Returns:
        PaymentMethod (CASH when value is None/empty)

    Raises:
        ValueError: If value is not a known method
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return PaymentMethod.CASH

    if isinstance(value, PaymentMethod):
        return value

    normalized = str(value).strip().lower()
    for method in PaymentMethod:
        if normalized in (method.value.lower(), method.name.lower(), method.name.lower().replace('_', ' ')):
            return method

    raise ValueError(f"Invalid payment method: {value}")


class Transaction(Base):
    """
    Immutable record of one sale line.

    Rows are only written by the sale operations and carry the session id
    (and checkout id for multi-item checkouts) as plain foreign keys, since the
    session itself only lives in the session registry.
    """

    __tablename__ = 'sale_transaction'
    __table_args__ = (
        CheckConstraint('qty >= 1', name='ck_transaction_qty_positive'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    # No FK: the product may be deleted later, the sale must survive
    product_id = Column(BigInteger, nullable=True, index=True)
    product_name = Column(String(255), nullable=False)
    qty = Column(Integer, nullable=False)
    price_per_unit = Column(BigInteger, nullable=False)
    total_price = Column(BigInteger, nullable=False)
    cost_price = Column(BigInteger, nullable=False, default=0)
    original_price = Column(BigInteger, nullable=False, default=0)  # Catalog price before discount/edit
    cart_price = Column(BigInteger, nullable=False, default=0)  # Price as sold at checkout
    checkout_id = Column(String(40), nullable=True, index=True)
    sold_by_shopkeeper_id = Column(String(64), nullable=False)
    sold_by = Column(String(120), nullable=False, default='Unknown')
    session_id = Column(String(64), nullable=False, index=True)
    sold_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    customer_name = Column(String(200), nullable=False, default='')
    customer_phone = Column(String(50), nullable=False, default='')
    customer_email = Column(String(200), nullable=False, default='')
    payment_method = Column(Enum(PaymentMethod, name='payment_method'), nullable=False, default=PaymentMethod.CASH)

    def __repr__(self):
        return f"<Transaction(id={self.id}, product='{self.product_name}', qty={self.qty}, total={self.total_price})>"

    def to_dict(self):
        return {
            'id': self.id,
            'productId': self.product_id,
            'productName': self.product_name,
            'qty': self.qty,
            'pricePerUnit': self.price_per_unit,
            'totalPrice': self.total_price,
            'costPrice': self.cost_price,
            'originalPrice': self.original_price,
            'cartPrice': self.cart_price,
            'checkoutId': self.checkout_id,
            'soldByShopkeeperId': self.sold_by_shopkeeper_id,
            'soldBy': self.sold_by,
            'sessionId': self.session_id,
            'soldAt': self.sold_at.isoformat() if self.sold_at else None,
            'customerName': self.customer_name,
            'customerPhone': self.customer_phone,
            'customerEmail': self.customer_email,
            'paymentMethod': self.payment_method.value if self.payment_method else None,
        }
