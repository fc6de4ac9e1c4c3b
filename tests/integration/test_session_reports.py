"""
Integration tests for closing sessions, report listings and cash reconciliation.
"""
from datetime import datetime

import pytest

from vapestock.exceptions import (
    SessionNotFoundError, DuplicateReportError, ReportNotFoundError, InvalidOperationError,
    UnauthorizedError
)
from vapestock.models import SessionReport
from vapestock.services.event_service import SESSION_ENDED, SESSION_RECONCILED
from vapestock.services.sales_service import sell_product
from vapestock.services.spending_service import add_spending
from vapestock.services.session_service import Seller
from vapestock.services.session_report_service import (
    close_session, list_live_sessions, list_session_reports, get_session_report_details,
    delete_session_report, format_duration
)
from vapestock.services.reconciliation_service import apply_reconciliation, add_deposit

SHOP = 'test_shop'


@pytest.fixture
def closed_report(session, registry, seller, device):
    """Report of a session that sold 5 units at 100."""
    sell_product(session, SHOP, seller, device.id, 5, registry=registry)
    return close_session(session, SHOP, seller.session_id, registry=registry)


class TestCloseSession:
    """Tests for ending a session and writing its report."""

    def test_report_totals(self, session, registry, seller, device, closed_report):
        report = closed_report

        assert report.session_id == seller.session_id
        assert report.shopkeeper_username == 'alice'
        assert report.total_amount == 500
        assert report.total_items_sold == 5
        assert report.cash_submitted == 0
        assert report.remaining_balance == 500
        assert report.is_reconciled is False
        assert report.reconciled_at is None
        assert report.end_time is not None
        assert len(report.items) == 1
        assert report.items[0].total_price == 500

        assert registry.get_session(seller.session_id) is None

    def test_report_includes_spendings(self, session, registry, seller, device):
        sell_product(session, SHOP, seller, device.id, 2, registry=registry)
        add_spending(session, seller, 'Lunch', 50, registry=registry)
        add_spending(session, seller, 'Tape', 15, registry=registry)

        report = close_session(session, SHOP, seller.session_id, registry=registry)

        assert report.total_amount == 200
        assert report.total_spending == 65
        assert report.net_cash_expected == 135
        assert [s.reason for s in report.spendings] == ['Lunch', 'Tape']

    def test_empty_session(self, session, registry, seller):
        report = close_session(session, SHOP, seller.session_id, registry=registry)
        assert report.total_amount == 0
        assert report.items == []

    def test_unknown_session(self, session, registry):
        with pytest.raises(SessionNotFoundError):
            close_session(session, SHOP, 'no-such-session', registry=registry)

    def test_closing_twice(self, session, registry, seller, closed_report):
        with pytest.raises(SessionNotFoundError):
            close_session(session, SHOP, seller.session_id, registry=registry)
        assert session.query(SessionReport).count() == 1

    def test_duplicate_report_keeps_session_open(self, session, registry, seller):
        now = datetime(2024, 1, 1, 10, 0)
        session.add(SessionReport(
            session_id=seller.session_id,
            shopkeeper_id='sk-1',
            shopkeeper_username='alice',
            start_time=now,
            end_time=now,
            total_amount=0,
            remaining_balance=0
        ))
        session.commit()

        with pytest.raises(DuplicateReportError):
            close_session(session, SHOP, seller.session_id, registry=registry)

        assert registry.get_session(seller.session_id) is not None
        assert session.query(SessionReport).count() == 1

    def test_other_shop_cannot_close_the_session(self, session, registry, seller, device):
        sell_product(session, SHOP, seller, device.id, 1, registry=registry)

        with pytest.raises(UnauthorizedError):
            close_session(session, 'other_shop', seller.session_id, registry=registry)

        assert registry.get_session(seller.session_id) is not None
        assert session.query(SessionReport).count() == 0

    def test_emits_session_ended(self, session, registry, seller, events):
        report = close_session(session, SHOP, seller.session_id, registry=registry)

        ended = [e for e in events if e[1] == SESSION_ENDED]
        assert len(ended) == 1
        assert ended[0][2]['report']['id'] == report.id


class TestReportListings:
    """Tests for admin report views."""

    def test_live_sessions_are_listed_first(self, session, registry, seller, device, closed_report):
        live_id = registry.open_session('sk-2', 'bob')
        bob = Seller(live_id, 'sk-2', 'bob')
        add_spending(session, bob, 'Change float', 100, registry=registry)
        registry.open_session('sk-3', 'carol')  # no activity in this shop

        data = list_session_reports(session, registry=registry)

        assert data['activeSessions'] == 1
        assert data['pagination']['totalCount'] == 2
        assert data['reports'][0]['isActive'] is True
        assert data['reports'][0]['sessionId'] == live_id
        assert data['reports'][0]['totalAmount'] == 0
        assert data['reports'][0]['totalSpending'] == 100
        assert data['reports'][1]['id'] == closed_report.id
        assert data['reports'][1]['isActive'] is False

    def test_list_live_sessions(self, session, registry, seller, device):
        sell_product(session, SHOP, seller, device.id, 2, registry=registry)
        add_spending(session, seller, 'Water', 30, registry=registry)

        live = list_live_sessions(session, registry)

        assert len(live) == 1
        assert live[0]['sessionId'] == seller.session_id
        assert live[0]['totalAmount'] == 200
        assert live[0]['totalSpending'] == 30
        assert live[0]['endTime'] is None
        assert len(live[0]['soldItems']) == 1

    def test_live_sessions_are_attributed_by_shop(self, session, registry, seller):
        idle_id = registry.open_session('sk-4', 'erin', shop=SHOP)
        registry.open_session('sk-5', 'frank', shop='other_shop')

        live = list_live_sessions(session, registry, shop=SHOP)

        assert [s['sessionId'] for s in live] == [seller.session_id, idle_id]
        data = list_session_reports(session, registry=registry, shop=SHOP)
        assert data['activeSessions'] == 2

    def test_pagination_arguments(self, session, registry):
        with pytest.raises(InvalidOperationError):
            list_session_reports(session, page=0, registry=registry)

    def test_details(self, session, closed_report):
        details = get_session_report_details(session, closed_report.id)

        assert details['totalAmount'] == 500
        assert details['netCashExpected'] == 500
        assert details['duration'] == '0h 0m'
        assert len(details['soldItems']) == 1

    def test_delete(self, session, closed_report):
        report_id = closed_report.id
        delete_session_report(session, report_id)

        with pytest.raises(ReportNotFoundError):
            get_session_report_details(session, report_id)

    def test_format_duration(self):
        assert format_duration(datetime(2024, 1, 1, 10, 0), datetime(2024, 1, 1, 12, 5)) == '2h 5m'
        assert format_duration(datetime(2024, 1, 1, 10, 0), datetime(2024, 1, 1, 9, 0)) == '0h 0m'
        assert format_duration(None, datetime(2024, 1, 1)) == '0h 0m'


class TestReconciliation:
    """Tests for recording cash submitted against a report."""

    def test_full_payment(self, session, closed_report):
        report = apply_reconciliation(session, closed_report.id, 500)

        assert report.cash_submitted == 500
        assert report.remaining_balance == 0
        assert report.is_reconciled is True
        assert report.reconciled_at is not None

    def test_overpayment_goes_negative(self, session, closed_report):
        report = apply_reconciliation(session, closed_report.id, 700)

        assert report.remaining_balance == -200
        assert report.is_reconciled is True

    def test_zero_cash(self, session, closed_report):
        report = apply_reconciliation(session, closed_report.id, 0)

        assert report.remaining_balance == 500
        assert report.is_reconciled is False
        assert report.reconciled_at is not None

    def test_cumulative_value_can_be_lowered(self, session, closed_report):
        apply_reconciliation(session, closed_report.id, 500)
        report = apply_reconciliation(session, closed_report.id, 100)

        assert report.cash_submitted == 100
        assert report.remaining_balance == 400
        assert report.is_reconciled is False

    def test_rounding(self, session, closed_report):
        report = apply_reconciliation(session, closed_report.id, '199.5')
        assert report.cash_submitted == 200
        assert report.remaining_balance == 300

    def test_invalid_amounts(self, session, closed_report):
        for value in (-1, None, '', 'lots', 'NaN', float('inf'), 'Infinity'):
            with pytest.raises(InvalidOperationError):
                apply_reconciliation(session, closed_report.id, value)

        session.refresh(closed_report)
        assert closed_report.cash_submitted == 0
        assert closed_report.reconciled_at is None

    def test_unknown_report(self, session):
        with pytest.raises(ReportNotFoundError):
            apply_reconciliation(session, 12345, 10)
        with pytest.raises(ReportNotFoundError):
            add_deposit(session, 12345, 10)

    def test_sales_snapshot_is_untouched(self, session, closed_report):
        apply_reconciliation(session, closed_report.id, 300)
        add_deposit(session, closed_report.id, 50)

        session.refresh(closed_report)
        assert closed_report.total_amount == 500
        assert closed_report.total_items_sold == 5
        assert len(closed_report.items) == 1
        assert closed_report.items[0].total_price == 500

    def test_deposits_accumulate(self, session, closed_report):
        report = add_deposit(session, closed_report.id, 200)
        assert report.cash_submitted == 200
        assert report.remaining_balance == 300
        assert report.is_reconciled is False

        report = add_deposit(session, closed_report.id, 300)
        assert report.cash_submitted == 500
        assert report.remaining_balance == 0
        assert report.is_reconciled is True

    def test_deposit_must_be_positive(self, session, closed_report):
        with pytest.raises(InvalidOperationError):
            add_deposit(session, closed_report.id, 0)
        with pytest.raises(InvalidOperationError):
            add_deposit(session, closed_report.id, float('inf'))

    def test_emits_reconciled_for_shop(self, session, closed_report, events):
        apply_reconciliation(session, closed_report.id, 500, shop=SHOP)

        reconciled = [e[2] for e in events if e[1] == SESSION_RECONCILED]
        assert reconciled[-1]['reportId'] == closed_report.id
        assert reconciled[-1]['isReconciled'] is True
