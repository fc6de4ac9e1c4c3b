"""Spending model - incidental expenses paid out during a session."""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, CheckConstraint
from sqlalchemy.sql import func

from vapestock.database import Base


class Spending(Base):
    """Expense paid out of the till during a shopkeeper session."""

    __tablename__ = 'spending'
    __table_args__ = (
        CheckConstraint('amount >= 0', name='ck_spending_amount_non_negative'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False, index=True)
    shopkeeper_id = Column(String(64), nullable=False)
    shopkeeper_username = Column(String(120), nullable=False)
    reason = Column(String(500), nullable=False)
    amount = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Spending(id={self.id}, session='{self.session_id}', amount={self.amount})>"

    def to_dict(self):
        return {
            'id': self.id,
            'sessionId': self.session_id,
            'shopkeeperId': self.shopkeeper_id,
            'shopkeeperUsername': self.shopkeeper_username,
            'reason': self.reason,
            'amount': self.amount,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }
