"""Session report model - durable snapshot of a closed shopkeeper session."""
from sqlalchemy import (
    Column, BigInteger, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from vapestock.database import Base


class SessionReport(Base):
    """
    Session report, written once when the session closes.

    Everything except the reconciliation columns (cash_submitted,
    remaining_balance, is_reconciled, reconciled_at) is write-once.
    """

    __tablename__ = 'session_report'
    __table_args__ = (
        UniqueConstraint('session_id', name='uq_session_report_session_id'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False, index=True)
    shopkeeper_id = Column(String(64), nullable=False, index=True)
    shopkeeper_username = Column(String(120), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=False)
    total_amount = Column(BigInteger, nullable=False, default=0)
    total_items_sold = Column(Integer, nullable=False, default=0)
    total_spending = Column(BigInteger, nullable=False, default=0)

    # Cash reconciliation (the only mutable part)
    cash_submitted = Column(BigInteger, nullable=False, default=0)
    remaining_balance = Column(BigInteger, nullable=False, default=0)
    is_reconciled = Column(Boolean, nullable=False, default=False)
    reconciled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    items = relationship('SessionReportItem', back_populates='report', cascade='all, delete-orphan', order_by='SessionReportItem.position')
    spendings = relationship('SessionReportSpending', back_populates='report', cascade='all, delete-orphan', order_by='SessionReportSpending.position')

    def __repr__(self):
        return f"<SessionReport(id={self.id}, session='{self.session_id}', total={self.total_amount})>"

    @property
    def net_cash_expected(self):
        """Sales minus what was paid out during the session."""
        return (self.total_amount or 0) - (self.total_spending or 0)

    def reconciliation_dict(self):
        return {
            'cashSubmitted': self.cash_submitted,
            'remainingBalance': self.remaining_balance,
            'isReconciled': self.is_reconciled,
            'reconciledAt': self.reconciled_at.isoformat() if self.reconciled_at else None,
        }

    def to_dict(self, include_items=True):
        data = {
            'id': self.id,
            'sessionId': self.session_id,
            'shopkeeperId': self.shopkeeper_id,
            'shopkeeperUsername': self.shopkeeper_username,
            'startTime': self.start_time.isoformat() if self.start_time else None,
            'endTime': self.end_time.isoformat() if self.end_time else None,
            'totalAmount': self.total_amount,
            'totalItemsSold': self.total_items_sold,
            'totalSpending': self.total_spending,
            'isActive': False,
        }
        data.update(self.reconciliation_dict())
        if include_items:
            data['soldItems'] = [item.to_dict() for item in self.items]
            data['spendings'] = [s.to_dict() for s in self.spendings]
        return data


class SessionReportItem(Base):
    """Denormalized copy of a Transaction folded into a report."""

    __tablename__ = 'session_report_item'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    report_id = Column(BigInteger, ForeignKey('session_report.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    transaction_id = Column(BigInteger, nullable=True)
    product_id = Column(BigInteger, nullable=True)
    product_name = Column(String(255), nullable=False)
    qty = Column(Integer, nullable=False)
    price_per_unit = Column(BigInteger, nullable=False)
    total_price = Column(BigInteger, nullable=False)
    cost_price = Column(BigInteger, nullable=False, default=0)
    original_price = Column(BigInteger, nullable=False, default=0)
    cart_price = Column(BigInteger, nullable=False, default=0)
    checkout_id = Column(String(40), nullable=False, default='')
    customer_name = Column(String(200), nullable=False, default='')
    customer_phone = Column(String(50), nullable=False, default='')
    customer_email = Column(String(200), nullable=False, default='')
    payment_method = Column(String(20), nullable=False, default='Cash')
    sold_at = Column(DateTime(timezone=True), nullable=False)

    report = relationship('SessionReport', back_populates='items')

    def to_dict(self):
        return {
            'productId': self.product_id,
            'productName': self.product_name,
            'qty': self.qty,
            'pricePerUnit': self.price_per_unit,
            'totalPrice': self.total_price,
            'costPrice': self.cost_price,
            'originalPrice': self.original_price,
            'cartPrice': self.cart_price,
            'checkoutId': self.checkout_id,
            'customerName': self.customer_name,
            'customerPhone': self.customer_phone,
            'customerEmail': self.customer_email,
            'paymentMethod': self.payment_method,
            'soldAt': self.sold_at.isoformat() if self.sold_at else None,
        }


class SessionReportSpending(Base):
    """Denormalized copy of a Spending folded into a report."""

    __tablename__ = 'session_report_spending'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    report_id = Column(BigInteger, ForeignKey('session_report.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    reason = Column(String(500), nullable=False)
    amount = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    report = relationship('SessionReport', back_populates='spendings')

    def to_dict(self):
        return {
            'reason': self.reason,
            'amount': self.amount,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }
