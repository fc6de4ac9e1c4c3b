"""Shop blueprint - shopkeeper POS operations (JSON API)."""
from flask import Blueprint, request, jsonify, g, current_app

from vapestock.middleware import get_shop_session, require_pos_session
from vapestock.exceptions import BusinessLogicError, InvalidOperationError
from vapestock.services.session_service import get_session_registry
from vapestock.services import (
    sales_service, bottle_service, spending_service, session_report_service, inventory_service
)

shop_bp = Blueprint('shop', __name__, url_prefix='/api/shop/<shop>')


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def _customer(data: dict) -> dict:
    return {
        'name': data.get('customerName'),
        'phone': data.get('customerPhone'),
        'email': data.get('customerEmail'),
    }


# =====================================================
# SESSION
# =====================================================

@shop_bp.route('/session', methods=['POST'])
def open_session(shop):
    """Start a shopkeeper session (called by the login layer once identity is verified)."""
    get_shop_session(shop)
    data = _json_body()
    shopkeeper_id = data.get('shopkeeperId')
    username = (data.get('username') or '').strip()
    if not shopkeeper_id or not username:
        raise InvalidOperationError('shopkeeperId and username are required')

    registry = get_session_registry()
    session_id = registry.open_session(shopkeeper_id, username, shop=shop)
    return jsonify({
        'success': True,
        'sessionId': session_id,
        'session': registry.get_session(session_id).to_dict(),
    }), 201


@shop_bp.route('/session', methods=['GET'])
@require_pos_session
def session_info(shop):
    return jsonify({'success': True, 'session': g.pos_session.to_dict()})


@shop_bp.route('/logout', methods=['POST'])
@require_pos_session
def logout(shop):
    """End the session and generate its report."""
    db_session = get_shop_session(shop)
    report = session_report_service.close_session(db_session, shop, g.seller.session_id)
    return jsonify({
        'success': True,
        'message': 'Session ended and report generated',
        'report': report.to_dict(),
    })


@shop_bp.route('/transactions', methods=['GET'])
@require_pos_session
def session_transactions(shop):
    db_session = get_shop_session(shop)
    transactions = sales_service.get_session_transactions(db_session, g.seller.session_id)
    return jsonify({
        'success': True,
        'count': len(transactions),
        'transactions': [t.to_dict() for t in transactions],
    })


# =====================================================
# SALES
# =====================================================

@shop_bp.route('/sell', methods=['POST'])
@require_pos_session
def sell(shop):
    db_session = get_shop_session(shop)
    data = _json_body()
    if not data.get('productId'):
        raise InvalidOperationError('productId is required')

    transaction = sales_service.sell_product(
        db_session, shop, g.seller, data['productId'],
        quantity=data.get('qty', 1),
        price=data.get('price'),
        customer=_customer(data),
        payment_method=data.get('paymentMethod')
    )
    product = inventory_service.get_product(db_session, transaction.product_id)
    return jsonify({
        'success': True,
        'message': 'Product sold successfully',
        'transaction': transaction.to_dict(),
        'product': {'id': product.id, 'name': product.name, 'remainingUnits': product.units},
    })


@shop_bp.route('/sell-bulk', methods=['POST'])
@require_pos_session
def sell_bulk(shop):
    db_session = get_shop_session(shop)
    data = _json_body()
    items = data.get('items')
    if not isinstance(items, list) or not items:
        raise InvalidOperationError('No items to sell')

    result = sales_service.sell_bulk(
        db_session, shop, g.seller, items,
        customer=_customer(data),
        payment_method=data.get('paymentMethod')
    )
    body = result.to_dict()
    body.update({'success': True, 'message': f'Sold {len(result.sold_items)} item(s)'})
    return jsonify(body)


# =====================================================
# OPENED BOTTLES
# =====================================================

@shop_bp.route('/open-bottle', methods=['POST'])
@require_pos_session
def open_bottle(shop):
    db_session = get_shop_session(shop)
    data = _json_body()
    if not data.get('productId'):
        raise InvalidOperationError('productId is required')

    bottle = bottle_service.open_bottle(db_session, shop, data['productId'], opened_by=g.seller.username)
    return jsonify({'success': True, 'message': 'Bottle opened', 'openedBottle': bottle.to_dict()}), 201


@shop_bp.route('/opened-bottles', methods=['GET'])
@require_pos_session
def opened_bottles(shop):
    db_session = get_shop_session(shop)
    try:
        status = request.args.get('status', 'open')
        bottles = bottle_service.list_opened_bottles(db_session, None if status == 'all' else status)
    except ValueError as e:
        raise BusinessLogicError(str(e))
    return jsonify({
        'success': True,
        'count': len(bottles),
        'openedBottles': [b.to_dict() for b in bottles],
    })


@shop_bp.route('/opened-bottles/<int:bottle_id>', methods=['DELETE'])
@require_pos_session
def delete_opened_bottle(shop, bottle_id):
    """Remove an opened bottle record. Bottles with ml left need ?force=true."""
    db_session = get_shop_session(shop)
    force = request.args.get('force', '').lower() in ('1', 'true', 'yes')
    bottle_service.delete_opened_bottle(db_session, bottle_id, force=force)
    current_app.logger.info(f"[SHOP] {g.seller.username} deleted opened bottle {bottle_id}")
    return jsonify({'success': True, 'message': 'Opened bottle deleted'})


@shop_bp.route('/sell-ml', methods=['POST'])
@require_pos_session
def sell_ml(shop):
    db_session = get_shop_session(shop)
    data = _json_body()
    if not data.get('openedBottleId'):
        raise InvalidOperationError('openedBottleId is required')

    result = bottle_service.sell_ml(
        db_session, shop, g.seller, data['openedBottleId'], data.get('mlAmount'),
        price=data.get('price'),
        customer=_customer(data),
        payment_method=data.get('paymentMethod')
    )
    return jsonify({
        'success': True,
        'message': f'Sold {result.ml_sold}ml',
        'sale': result.to_dict(),
        'transaction': result.transaction.to_dict(),
    })


# =====================================================
# SPENDING
# =====================================================

@shop_bp.route('/spending', methods=['POST'])
@require_pos_session
def add_spending(shop):
    db_session = get_shop_session(shop)
    data = _json_body()
    spending = spending_service.add_spending(
        db_session, g.seller, data.get('reason'), data.get('amount'), shop=shop
    )
    return jsonify({
        'success': True,
        'message': 'Spending recorded successfully',
        'spending': spending.to_dict(),
    }), 201


@shop_bp.route('/spending', methods=['GET'])
@require_pos_session
def session_spending(shop):
    db_session = get_shop_session(shop)
    summary = spending_service.get_session_spendings(db_session, g.seller.session_id)
    summary['spendings'] = [s.to_dict() for s in summary['spendings']]
    summary['success'] = True
    return jsonify(summary)


# =====================================================
# CATALOG
# =====================================================

@shop_bp.route('/products', methods=['GET'])
@require_pos_session
def products(shop):
    db_session = get_shop_session(shop)
    try:
        items = inventory_service.list_products(
            db_session,
            category=request.args.get('category'),
            search=request.args.get('search'),
            in_stock_only=request.args.get('inStock') == 'true'
        )
    except ValueError as e:
        raise BusinessLogicError(str(e))
    return jsonify({'success': True, 'count': len(items), 'products': [p.to_dict() for p in items]})


@shop_bp.route('/scan/<code>', methods=['GET'])
@require_pos_session
def scan(shop, code):
    db_session = get_shop_session(shop)
    product = inventory_service.find_by_barcode(db_session, code)
    return jsonify({'success': True, 'product': product.to_dict()})


@shop_bp.route('/products/<int:product_id>/price', methods=['PATCH'])
@require_pos_session
def update_price(shop, product_id):
    db_session = get_shop_session(shop)
    data = _json_body()
    if data.get('sellPrice') is None:
        raise InvalidOperationError('Valid price is required')
    product, old_price = inventory_service.update_product_price(db_session, product_id, data['sellPrice'])
    current_app.logger.info(
        f"[SHOP] {g.seller.username} changed price of product {product_id}: {old_price} -> {product.sell_price}"
    )
    return jsonify({'success': True, 'product': product.to_dict(), 'oldPrice': old_price})
