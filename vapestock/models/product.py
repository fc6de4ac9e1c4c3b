"""Product model."""
import enum

from sqlalchemy import (
    Column, BigInteger, Integer, String, Boolean, Text, DateTime, ForeignKey,
    Enum, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from vapestock.database import Base


class ProductCategory(enum.Enum):
    """Product category enum."""
    DEVICE = "Device"
    COIL = "Coil"
    E_LIQUID = "E-Liquid"

    @classmethod
    def parse(cls, value):
        """Accept an enum member, its value ('E-Liquid') or its name ('E_LIQUID')."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            cleaned = value.strip()
            for member in cls:
                if cleaned.lower() in (member.value.lower(), member.name.lower()):
                    return member
        raise ValueError(f"Invalid category: {value}. Must be one of: Device, Coil, E-Liquid.")


class Product(Base):
    """Product held by a shop, counted in whole sealed units."""

    __tablename__ = 'product'
    __table_args__ = (
        CheckConstraint('units >= 0', name='ck_product_units_non_negative'),
        CheckConstraint('sell_price >= 0', name='ck_product_sell_price_non_negative'),
        CheckConstraint('cost_price >= 0', name='ck_product_cost_price_non_negative'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    brand = Column(String(120), nullable=False, default='')
    category = Column(Enum(ProductCategory, name='product_category'), nullable=False)
    flavour = Column(String(120), nullable=False, default='')  # E-Liquid only
    units = Column(Integer, nullable=False, default=0)
    sell_price = Column(BigInteger, nullable=False, default=0)
    cost_price = Column(BigInteger, nullable=False, default=0)
    ml_capacity = Column(Integer, nullable=True)  # E-Liquid only
    has_opened_bottle = Column(Boolean, nullable=False, default=False)
    short_description = Column(Text, nullable=False, default='')
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    barcodes = relationship('ProductBarcode', back_populates='product', cascade='all, delete-orphan', order_by='ProductBarcode.id')

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', units={self.units})>"

    @property
    def is_e_liquid(self):
        return self.category == ProductCategory.E_LIQUID

    @property
    def barcode_values(self):
        return [b.code for b in self.barcodes]

    @property
    def stock_value(self):
        """Units on hand valued at sell price."""
        return (self.units or 0) * (self.sell_price or 0)

    @property
    def cost_value(self):
        """Units on hand valued at cost price."""
        return (self.units or 0) * (self.cost_price or 0)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'brand': self.brand,
            'category': self.category.value if self.category else None,
            'flavour': self.flavour,
            'units': self.units,
            'sellPrice': self.sell_price,
            'costPrice': self.cost_price,
            'mlCapacity': self.ml_capacity,
            'hasOpenedBottle': self.has_opened_bottle,
            'shortDescription': self.short_description,
            'barcodes': self.barcode_values,
        }


class ProductBarcode(Base):
    """Barcode attached to a product (a product can carry several)."""

    __tablename__ = 'product_barcode'
    __table_args__ = (
        UniqueConstraint('code', name='uq_product_barcode_code'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey('product.id', ondelete='CASCADE'), nullable=False, index=True)
    code = Column(String(64), nullable=False)

    product = relationship('Product', back_populates='barcodes')

    def __repr__(self):
        return f"<ProductBarcode(product_id={self.product_id}, code='{self.code}')>"
