"""
Admin blueprint - catalog management, session reports and reconciliation.

Admin authentication is handled by the gateway in front of this API.
"""
from flask import Blueprint, request, jsonify, current_app

from vapestock.middleware import get_shop_session
from vapestock.exceptions import BusinessLogicError, InvalidOperationError
from vapestock.models import InvestmentType
from vapestock.services.session_service import get_session_registry
from vapestock.services import (
    inventory_service, bottle_service, session_report_service, reconciliation_service, stats_service
)

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin/shops/<shop>')


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def _admin_name() -> str:
    return request.headers.get('X-Admin-User', 'Admin')


def _flag(name: str) -> bool:
    return request.args.get(name, '').lower() in ('1', 'true', 'yes')


def _page_args():
    try:
        page = int(request.args.get('page', 1))
        limit = int(request.args.get('limit', current_app.config.get('DEFAULT_PAGE_SIZE', 20)))
    except ValueError:
        raise InvalidOperationError('page and limit must be integers')
    return page, min(limit, current_app.config.get('MAX_PAGE_SIZE', 100))


# =====================================================
# PRODUCTS
# =====================================================

@admin_bp.route('/products', methods=['GET'])
def list_products(shop):
    db_session = get_shop_session(shop)
    try:
        products = inventory_service.list_products(
            db_session,
            category=request.args.get('category'),
            search=request.args.get('search')
        )
    except ValueError as e:
        raise BusinessLogicError(str(e))
    return jsonify({'success': True, 'count': len(products), 'products': [p.to_dict() for p in products]})


@admin_bp.route('/products', methods=['POST'])
def create_product(shop):
    db_session = get_shop_session(shop)
    try:
        product, merged = inventory_service.create_product(db_session, shop, _json_body(), created_by=_admin_name())
    except ValueError as e:
        raise BusinessLogicError(str(e))

    message = 'Product merged with existing product' if merged else 'Product created successfully'
    return jsonify({'success': True, 'message': message, 'merged': merged, 'product': product.to_dict()}), \
        200 if merged else 201


@admin_bp.route('/products/<int:product_id>', methods=['GET'])
def get_product(shop, product_id):
    db_session = get_shop_session(shop)
    product = inventory_service.get_product(db_session, product_id)
    return jsonify({'success': True, 'product': product.to_dict()})


@admin_bp.route('/products/<int:product_id>', methods=['PUT'])
def update_product(shop, product_id):
    db_session = get_shop_session(shop)
    try:
        product = inventory_service.update_product(
            db_session, shop, product_id, _json_body(), updated_by=_admin_name()
        )
    except ValueError as e:
        raise BusinessLogicError(str(e))
    return jsonify({'success': True, 'message': 'Product updated successfully', 'product': product.to_dict()})


@admin_bp.route('/products/<int:product_id>/restock', methods=['POST'])
def restock_product(shop, product_id):
    db_session = get_shop_session(shop)
    data = _json_body()
    product = inventory_service.restock_product(
        db_session, shop, product_id, data.get('units'), created_by=_admin_name(), note=data.get('note') or ''
    )
    return jsonify({'success': True, 'product': product.to_dict()})


@admin_bp.route('/products/<int:product_id>', methods=['DELETE'])
def delete_product(shop, product_id):
    db_session = get_shop_session(shop)
    deducted = inventory_service.delete_product(
        db_session, product_id, deduct_investment=_flag('deductInvestment'), deleted_by=_admin_name()
    )
    return jsonify({
        'success': True,
        'message': 'Product deleted successfully',
        'investmentDeducted': deducted,
    })


# =====================================================
# INVESTMENTS
# =====================================================

@admin_bp.route('/investments', methods=['GET'])
def list_investments(shop):
    db_session = get_shop_session(shop)
    page, limit = _page_args()
    inv_type = request.args.get('type')
    try:
        type_filter = InvestmentType(inv_type) if inv_type else None
    except ValueError:
        raise InvalidOperationError(f'Invalid investment type: {inv_type}')

    investments = inventory_service.list_investments(
        db_session, limit=limit, offset=(page - 1) * limit, type_filter=type_filter
    )
    return jsonify({
        'success': True,
        'investments': [i.to_dict() for i in investments],
        'summary': inventory_service.get_investment_summary(db_session),
    })


# =====================================================
# STATS
# =====================================================

@admin_bp.route('/stats', methods=['GET'])
def shop_stats(shop):
    """Sales, profit and investment totals, optionally between fromDate and toDate (YYYY-MM-DD)."""
    db_session = get_shop_session(shop)
    stats = stats_service.get_shop_stats(
        db_session,
        from_date=stats_service.parse_date(request.args.get('fromDate')),
        to_date=stats_service.parse_date(request.args.get('toDate'))
    )
    return jsonify({'success': True, 'stats': stats})


# =====================================================
# SESSION REPORTS
# =====================================================

@admin_bp.route('/active-sessions', methods=['GET'])
def active_sessions(shop):
    db_session = get_shop_session(shop)
    live = session_report_service.list_live_sessions(db_session, get_session_registry(), shop=shop)
    return jsonify({'success': True, 'count': len(live), 'activeSessions': live})


@admin_bp.route('/session-reports', methods=['GET'])
def list_session_reports(shop):
    db_session = get_shop_session(shop)
    page, limit = _page_args()
    data = session_report_service.list_session_reports(
        db_session, page=page, limit=limit, registry=get_session_registry(), shop=shop
    )
    data['success'] = True
    return jsonify(data)


@admin_bp.route('/session-reports/<int:report_id>', methods=['GET'])
def session_report_details(shop, report_id):
    db_session = get_shop_session(shop)
    report = session_report_service.get_session_report_details(db_session, report_id)
    return jsonify({'success': True, 'report': report})


@admin_bp.route('/session-reports/<int:report_id>', methods=['DELETE'])
def delete_session_report(shop, report_id):
    db_session = get_shop_session(shop)
    session_report_service.delete_session_report(db_session, report_id)
    return jsonify({'success': True, 'message': 'Session report deleted successfully'})


@admin_bp.route('/session-reports/<int:report_id>/reconcile', methods=['PUT'])
def reconcile(shop, report_id):
    """Set the cumulative cash submitted for a session."""
    db_session = get_shop_session(shop)
    data = _json_body()
    if data.get('cashSubmitted') is None:
        raise InvalidOperationError('Cash submitted amount is required')

    report = reconciliation_service.apply_reconciliation(db_session, report_id, data['cashSubmitted'], shop=shop)
    return jsonify({
        'success': True,
        'message': 'Session reconciliation updated successfully',
        'report': report.to_dict(include_items=False),
    })


@admin_bp.route('/session-reports/<int:report_id>/deposit', methods=['POST'])
def deposit(shop, report_id):
    """Add one cash deposit to a session."""
    db_session = get_shop_session(shop)
    data = _json_body()
    if data.get('amount') is None:
        raise InvalidOperationError('Deposit amount is required')

    report = reconciliation_service.add_deposit(db_session, report_id, data['amount'], shop=shop)
    return jsonify({
        'success': True,
        'message': 'Deposit recorded',
        'report': report.to_dict(include_items=False),
    })


# =====================================================
# OPENED BOTTLES
# =====================================================

@admin_bp.route('/opened-bottles', methods=['GET'])
def list_opened_bottles(shop):
    db_session = get_shop_session(shop)
    status = request.args.get('status')
    try:
        bottles = bottle_service.list_opened_bottles(db_session, None if status in (None, '', 'all') else status)
    except ValueError as e:
        raise BusinessLogicError(str(e))
    return jsonify({
        'success': True,
        'count': len(bottles),
        'openedBottles': [b.to_dict(include_history=_flag('history')) for b in bottles],
    })


@admin_bp.route('/opened-bottles/<int:bottle_id>', methods=['DELETE'])
def delete_opened_bottle(shop, bottle_id):
    db_session = get_shop_session(shop)
    bottle_service.delete_opened_bottle(db_session, bottle_id, force=_flag('force'))
    return jsonify({'success': True, 'message': 'Opened bottle deleted'})
