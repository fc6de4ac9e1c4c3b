"""
Flask CLI commands for shop store maintenance.

Commands:
- flask init-shop-db --shop <name>: Create the tables of a shop store
- flask active-sessions: List open shopkeeper sessions
- flask check-ledger --shop <name>: Report inconsistencies in a shop's stored totals
"""
import click
from sqlalchemy import func

from vapestock.database import get_store_registry
from vapestock.models import Product, OpenedBottle, BottleStatus, SessionReport, SessionReportItem
from vapestock.services.session_service import get_session_registry


def find_ledger_issues(db_session):
    """
    Scan a shop store for totals that disagree with their parts.

    Returns:
        list of human-readable issue descriptions (empty when consistent)
    """
    issues = []

    item_totals = dict(
        db_session.query(SessionReportItem.report_id, func.coalesce(func.sum(SessionReportItem.total_price), 0))
        .group_by(SessionReportItem.report_id).all()
    )
    for report in db_session.query(SessionReport).order_by(SessionReport.id):
        items_total = int(item_totals.get(report.id, 0))
        if items_total != report.total_amount:
            issues.append(f'Report {report.id}: total {report.total_amount} != sum of items {items_total}')
        expected_remaining = report.total_amount - report.cash_submitted
        if report.remaining_balance != expected_remaining:
            issues.append(
                f'Report {report.id}: remaining {report.remaining_balance} != '
                f'total - cash submitted ({expected_remaining})'
            )
        if report.reconciled_at is not None and report.is_reconciled != (report.remaining_balance <= 0):
            issues.append(f'Report {report.id}: isReconciled={report.is_reconciled} with remaining {report.remaining_balance}')

    open_products = {
        row[0] for row in db_session.query(OpenedBottle.product_id)
        .filter(OpenedBottle.status == BottleStatus.OPEN, OpenedBottle.product_id.isnot(None))
    }
    for product in db_session.query(Product).filter(Product.has_opened_bottle.is_(True)):
        if product.id not in open_products:
            issues.append(f"Product {product.id} ('{product.name}'): flagged as opened but has no open bottle")
    for product_id in open_products:
        product = db_session.get(Product, product_id)
        if product is not None and not product.has_opened_bottle:
            issues.append(f"Product {product_id} ('{product.name}'): has an open bottle but is not flagged")

    return issues


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-shop-db')
    @click.option('--shop', required=True, help='Shop database name')
    def init_shop_db(shop):
        """Create all tables of a shop store (idempotent)."""
        try:
            store = get_store_registry().get(shop)
            store.create_schema()
        except Exception as e:
            click.echo(click.style(f'Error creating schema for {shop}: {e}', fg='red'))
            raise SystemExit(1)
        click.echo(click.style(f'Schema ready for shop {shop}', fg='green', bold=True))

    @app.cli.command('active-sessions')
    def active_sessions():
        """List open shopkeeper sessions."""
        sessions = get_session_registry().list_active_sessions()
        if not sessions:
            click.echo('No active sessions.')
            return
        for s in sessions:
            click.echo(
                f'{s.session_id}  {s.shopkeeper_username:<20} since {s.start_time.isoformat()}  '
                f'sales={s.sales_count} total={s.total_amount}'
            )

    @app.cli.command('check-ledger')
    @click.option('--shop', required=True, help='Shop database name')
    def check_ledger(shop):
        """Report (without fixing) inconsistent totals and bottle flags."""
        store = get_store_registry().get(shop)
        with store.session_scope() as db_session:
            issues = find_ledger_issues(db_session)

        if not issues:
            click.echo(click.style(f'No issues found in {shop}', fg='green'))
            return
        for issue in issues:
            click.echo(click.style(issue, fg='yellow'))
        click.echo(click.style(f'{len(issues)} issue(s) found in {shop}', fg='red', bold=True))
        raise SystemExit(1)
