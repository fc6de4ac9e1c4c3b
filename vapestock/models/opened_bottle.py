"""Opened bottle model - partial-unit tracking for E-Liquids."""
import enum

from sqlalchemy import (
    Column, BigInteger, Integer, String, DateTime, ForeignKey, Enum, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from vapestock.database import Base


class BottleStatus(enum.Enum):
    """Opened bottle status. EMPTY is terminal."""
    OPEN = "open"
    EMPTY = "empty"


class OpenedBottle(Base):
    """A sealed E-Liquid unit converted into ml-sale mode."""

    __tablename__ = 'opened_bottle'
    __table_args__ = (
        CheckConstraint('remaining_ml >= 0', name='ck_opened_bottle_remaining_non_negative'),
        CheckConstraint('remaining_ml <= ml_capacity', name='ck_opened_bottle_remaining_within_capacity'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    # Kept nullable: bottles outlive the product they were opened from
    product_id = Column(BigInteger, ForeignKey('product.id', ondelete='SET NULL'), nullable=True, index=True)
    product_name = Column(String(200), nullable=False)
    product_brand = Column(String(120), nullable=False, default='')
    ml_capacity = Column(Integer, nullable=False)
    remaining_ml = Column(Integer, nullable=False)
    status = Column(Enum(BottleStatus, name='bottle_status'), nullable=False, default=BottleStatus.OPEN, index=True)
    opened_by = Column(String(120), nullable=False, default='Unknown')
    opened_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    product = relationship('Product')
    sales_history = relationship('BottleSale', back_populates='bottle', cascade='all, delete-orphan', order_by='BottleSale.id')

    def __repr__(self):
        return f"<OpenedBottle(id={self.id}, product='{self.product_name}', remaining={self.remaining_ml}/{self.ml_capacity})>"

    @property
    def is_open(self):
        return self.status == BottleStatus.OPEN

    def to_dict(self, include_history=False):
        data = {
            'id': self.id,
            'productId': self.product_id,
            'productName': self.product_name,
            'productBrand': self.product_brand,
            'mlCapacity': self.ml_capacity,
            'remainingMl': self.remaining_ml,
            'status': self.status.value,
            'openedBy': self.opened_by,
            'openedAt': self.opened_at.isoformat() if self.opened_at else None,
        }
        if include_history:
            data['salesHistory'] = [s.to_dict() for s in self.sales_history]
        return data


class BottleSale(Base):
    """Append-only ml sale history of an opened bottle."""

    __tablename__ = 'bottle_sale'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    bottle_id = Column(BigInteger, ForeignKey('opened_bottle.id', ondelete='CASCADE'), nullable=False, index=True)
    ml_sold = Column(Integer, nullable=False)
    sold_by = Column(String(120), nullable=False, default='Unknown')
    sold_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    bottle = relationship('OpenedBottle', back_populates='sales_history')

    def to_dict(self):
        return {
            'mlSold': self.ml_sold,
            'soldBy': self.sold_by,
            'soldAt': self.sold_at.isoformat() if self.sold_at else None,
        }
