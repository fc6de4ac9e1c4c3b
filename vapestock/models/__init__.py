"""Models package - exports all SQLAlchemy models (one schema per shop store)."""
from vapestock.models.product import Product, ProductBarcode, ProductCategory
from vapestock.models.opened_bottle import OpenedBottle, BottleSale, BottleStatus
from vapestock.models.transaction import Transaction, PaymentMethod, normalize_payment_method
from vapestock.models.spending import Spending
from vapestock.models.session_report import SessionReport, SessionReportItem, SessionReportSpending
from vapestock.models.investment import Investment, InvestmentType

__all__ = [
    # Inventory
    'Product', 'ProductBarcode', 'ProductCategory',
    'OpenedBottle', 'BottleSale', 'BottleStatus',
    'Investment', 'InvestmentType',
    # Sales
    'Transaction', 'PaymentMethod', 'normalize_payment_method',
    'Spending',
    # Reports
    'SessionReport', 'SessionReportItem', 'SessionReportSpending',
]
