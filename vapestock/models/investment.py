"""Investment model - audit trail of money committed to stock."""
import enum

from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, Enum
from sqlalchemy.sql import func

from vapestock.database import Base


class InvestmentType(enum.Enum):
    """Investment type enum."""
    PRODUCT_ADD = "product_add"
    RESTOCK = "restock"
    ADJUSTMENT = "adjustment"
    DEDUCTION = "deduction"


class Investment(Base):
    """
    Stock value change record (append-only).

    units and total_amount are signed: deductions are negative so that
    summing total_amount gives the historical investment.
    """

    __tablename__ = 'investment'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    type = Column(Enum(InvestmentType, name='investment_type'), nullable=False, index=True)
    # No FK: investment records survive product deletion
    product_id = Column(BigInteger, nullable=True, index=True)
    product_name = Column(String(200), nullable=False)
    units = Column(Integer, nullable=False)
    cost_price = Column(BigInteger, nullable=False)
    total_amount = Column(BigInteger, nullable=False)
    created_by = Column(String(120), nullable=False, default='Admin')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    note = Column(Text, nullable=False, default='')

    def __repr__(self):
        return f"<Investment(id={self.id}, type={self.type.value}, total={self.total_amount})>"

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type.value,
            'productId': self.product_id,
            'productName': self.product_name,
            'units': self.units,
            'costPrice': self.cost_price,
            'totalAmount': self.total_amount,
            'createdBy': self.created_by,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'note': self.note,
        }
