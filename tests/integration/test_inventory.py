"""
Integration tests for the catalog, investments and the spending log.
"""

import pytest

from vapestock.exceptions import (
    InvalidOperationError, BusinessLogicError, ProductNotFoundError, SessionNotFoundError,
    UnauthorizedError
)
from vapestock.models import Product, OpenedBottle, Investment, InvestmentType, ProductCategory
from vapestock.services.bottle_service import open_bottle
from vapestock.services.inventory_service import (
    create_product, restock_product, update_product, update_product_price, delete_product,
    find_by_barcode, list_products, list_investments, get_investment_summary
)
from vapestock.services.session_report_service import close_session
from vapestock.services.spending_service import add_spending, get_session_spendings

SHOP = 'test_shop'

COIL = {
    'name': 'Mesh Coil 0.4',
    'brand': 'Voopoo',
    'category': 'Coil',
    'units': 10,
    'sellPrice': 250,
    'costPrice': 150,
    'barcode': '6901234567890',
}


class TestCreateProduct:
    """Tests for adding products to a shop's catalog."""

    def test_create_logs_investment(self, session):
        product, merged = create_product(session, SHOP, COIL, created_by='owner')

        assert merged is False
        assert product.category is ProductCategory.COIL
        assert product.units == 10
        assert product.barcode_values == ['6901234567890']

        investment = session.query(Investment).one()
        assert investment.type is InvestmentType.PRODUCT_ADD
        assert investment.total_amount == 1500
        assert investment.created_by == 'owner'

    def test_identical_product_is_merged(self, session):
        first, _ = create_product(session, SHOP, COIL)
        second, merged = create_product(session, SHOP, dict(COIL, name='mesh coil 0.4', units=5, barcode='111'))

        assert merged is True
        assert second.id == first.id
        assert second.units == 15
        assert sorted(second.barcode_values) == ['111', '6901234567890']
        assert session.query(Product).count() == 1

        restock = session.query(Investment).filter_by(type=InvestmentType.RESTOCK).one()
        assert restock.units == 5
        assert restock.total_amount == 750

    def test_different_price_is_a_new_product(self, session):
        create_product(session, SHOP, COIL)
        _, merged = create_product(session, SHOP, dict(COIL, sellPrice=300, barcode=None))

        assert merged is False
        assert session.query(Product).count() == 2

    def test_flavour_only_kept_for_e_liquids(self, session):
        product, _ = create_product(session, SHOP, dict(COIL, flavour='Mint', barcode=None))
        assert product.flavour == ''
        assert product.ml_capacity is None

        liquid, _ = create_product(session, SHOP, {
            'name': 'Ice Mint', 'category': 'E-Liquid', 'flavour': 'Mint',
            'units': 2, 'sellPrice': 1200, 'mlCapacity': 60,
        })
        assert liquid.flavour == 'Mint'
        assert liquid.ml_capacity == 60

    def test_validation(self, session):
        with pytest.raises(InvalidOperationError):
            create_product(session, SHOP, dict(COIL, name='  '))
        with pytest.raises(InvalidOperationError):
            create_product(session, SHOP, dict(COIL, category='Battery'))
        with pytest.raises(InvalidOperationError):
            create_product(session, SHOP, dict(COIL, units=-1))
        with pytest.raises(InvalidOperationError):
            create_product(session, SHOP, {'name': 'X', 'category': 'E-Liquid', 'mlCapacity': 0})
        assert session.query(Product).count() == 0

    def test_barcode_belongs_to_one_product(self, session, device):
        create_product(session, SHOP, COIL)

        with pytest.raises(BusinessLogicError):
            update_product(session, SHOP, device.id, {'barcode': COIL['barcode']})


class TestCatalog:
    """Tests for lookups, updates and deletions."""

    def test_find_by_barcode(self, session):
        product, _ = create_product(session, SHOP, COIL)

        assert find_by_barcode(session, ' 6901234567890 ').id == product.id
        with pytest.raises(ProductNotFoundError):
            find_by_barcode(session, '000')
        with pytest.raises(InvalidOperationError):
            find_by_barcode(session, '')

    def test_list_filters(self, session, device, e_liquid):
        assert [p.name for p in list_products(session)] == ['Mango Ice', 'Nord 4']
        assert [p.name for p in list_products(session, category='Device')] == ['Nord 4']
        assert [p.name for p in list_products(session, search='nasty')] == ['Mango Ice']

        device.units = 0
        session.commit()
        assert [p.name for p in list_products(session, in_stock_only=True)] == ['Mango Ice']

    def test_restock(self, session, device):
        product = restock_product(session, SHOP, device.id, 4, note='Supplier delivery')

        assert product.units == 9
        investment = session.query(Investment).one()
        assert investment.type is InvestmentType.RESTOCK
        assert investment.total_amount == 240
        assert investment.note == 'Supplier delivery'

        with pytest.raises(InvalidOperationError):
            restock_product(session, SHOP, device.id, 0)
        with pytest.raises(ProductNotFoundError):
            restock_product(session, SHOP, 999, 1)

    def test_unit_counts_must_be_whole(self, session, device):
        for units in (2.5, float('inf'), True):
            with pytest.raises(InvalidOperationError):
                restock_product(session, SHOP, device.id, units)
        with pytest.raises(InvalidOperationError):
            update_product(session, SHOP, device.id, {'units': 3.7})
        with pytest.raises(InvalidOperationError):
            create_product(session, SHOP, dict(COIL, units=1.5))

        session.refresh(device)
        assert device.units == 5
        assert session.query(Investment).count() == 0

    def test_unit_adjustment_is_logged(self, session, device):
        update_product(session, SHOP, device.id, {'units': 2, 'sellPrice': 110})

        session.refresh(device)
        assert device.units == 2
        assert device.sell_price == 110
        adjustment = session.query(Investment).one()
        assert adjustment.type is InvestmentType.ADJUSTMENT
        assert adjustment.units == -3
        assert adjustment.total_amount == -180

    def test_category_locked_while_bottle_open(self, session, e_liquid):
        open_bottle(session, SHOP, e_liquid.id)

        with pytest.raises(InvalidOperationError):
            update_product(session, SHOP, e_liquid.id, {'category': 'Device'})

    def test_update_price(self, session, device):
        product, old_price = update_product_price(session, device.id, '120.4')

        assert old_price == 100
        assert product.sell_price == 120
        with pytest.raises(InvalidOperationError):
            update_product_price(session, device.id, -5)

    def test_delete_with_investment_deduction(self, session, device):
        deducted = delete_product(session, device.id, deduct_investment=True)

        assert deducted == 300
        assert session.query(Product).count() == 0
        deduction = session.query(Investment).one()
        assert deduction.type is InvestmentType.DEDUCTION
        assert deduction.units == -5
        assert deduction.total_amount == -300

    def test_delete_without_deduction(self, session, device):
        assert delete_product(session, device.id) == 0
        assert session.query(Investment).count() == 0

    def test_bottles_outlive_their_product(self, session, e_liquid):
        bottle = open_bottle(session, SHOP, e_liquid.id)
        delete_product(session, e_liquid.id)

        session.refresh(bottle)
        assert bottle.product_id is None
        assert bottle.product_name == 'Mango Ice'
        assert session.query(OpenedBottle).count() == 1

    def test_investment_summary(self, session, device):
        create_product(session, SHOP, COIL)
        restock_product(session, SHOP, device.id, 5)

        summary = get_investment_summary(session)
        assert summary['byType']['product_add'] == 1500
        assert summary['byType']['restock'] == 300
        assert summary['totalInvestment'] == 1800
        assert summary['totalStockValue'] == 10 * 100 + 10 * 250
        assert summary['totalCostValue'] == 10 * 60 + 10 * 150

        restocks = list_investments(session, type_filter=InvestmentType.RESTOCK)
        assert [i.product_id for i in restocks] == [device.id]


class TestSpending:
    """Tests for the session spending log."""

    def test_add_and_summarize(self, session, registry, seller):
        add_spending(session, seller, '  Lunch  ', 50, registry=registry)
        add_spending(session, seller, 'Bus fare', '12.5', registry=registry)

        summary = get_session_spendings(session, seller.session_id)
        assert summary['count'] == 2
        assert summary['totalSpending'] == 63
        assert [s.reason for s in summary['spendings']] == ['Bus fare', 'Lunch']

    def test_validation(self, session, registry, seller):
        with pytest.raises(InvalidOperationError):
            add_spending(session, seller, '', 10, registry=registry)
        with pytest.raises(InvalidOperationError):
            add_spending(session, seller, 'Lunch', 0, registry=registry)
        with pytest.raises(InvalidOperationError):
            add_spending(session, seller, 'Lunch', -3, registry=registry)
        for amount in (float('inf'), 'Infinity', float('nan')):
            with pytest.raises(InvalidOperationError):
                add_spending(session, seller, 'Lunch', amount, registry=registry)
        assert get_session_spendings(session, seller.session_id)['count'] == 0

    def test_closed_session_is_rejected(self, session, registry, seller):
        close_session(session, SHOP, seller.session_id, registry=registry)

        with pytest.raises(SessionNotFoundError):
            add_spending(session, seller, 'Late lunch', 20, registry=registry)

    def test_spending_in_another_shop_is_rejected(self, session, registry, seller):
        with pytest.raises(UnauthorizedError):
            add_spending(session, seller, 'Lunch', 20, registry=registry, shop='other_shop')

        add_spending(session, seller, 'Lunch', 20, registry=registry, shop=SHOP)
        assert get_session_spendings(session, seller.session_id)['count'] == 1
