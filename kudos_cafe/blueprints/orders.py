from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, current_user
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from kudos_cafe.extensions import db
from kudos_cafe.models import (
    MenuItem,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentStatus,
)
from kudos_cafe.middleware import role_required
from kudos_cafe.services import order_message_service as messaging
from kudos_cafe.services.audit_service import log_audit
from kudos_cafe.services.refund_policy import (
    compute_refund,
    refund_advisory,
    to_money,
)
from kudos_cafe.utils import (
    paginate_query,
    refund_policy,
    request_data,
    store_error_response,
)
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('orders', __name__)

ORDER_SORTS = {
    'newest': Order.created_at.desc(),
    'oldest': Order.created_at.asc(),
    'amount_high': Order.total_amount.desc(),
    'amount_low': Order.total_amount.asc(),
}


def _next_order_number(now: datetime) -> str:
    prefix = f"KC-{now:%Y%m%d}-"
    count = Order.query.filter(
        Order.order_number.like(f"{prefix}%")).count()
    return f"{prefix}{count + 1:04d}"


def _insert_order(now: datetime, fields: dict):
    """Insert an order under the next free number for the day.

    Two checkouts can read the same daily count; the unique index
    rejects the loser, which rolls back and takes the next number.
    Returns None once every attempt has collided.
    """
    attempts = current_app.config['ORDER_NUMBER_ATTEMPTS']
    for attempt in range(1, attempts + 1):
        order = Order(order_number=_next_order_number(now), **fields)
        db.session.add(order)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            logger.warning(
                "Order number %s already taken (attempt %d of %d)",
                order.order_number, attempt, attempts)
            continue
        return order
    return None


def _own_order(order_id):
    return Order.query.filter_by(
        id=order_id,
        user_id=current_user.id,
    ).first_or_404()


def serialize_order(order, with_items=True):
    payload = {
        'id': order.id,
        'order_number': order.order_number,
        'status': order.status.value,
        'payment_status': order.payment_status.value,
        'order_type': order.order_type.value,
        'total_amount': float(order.total_amount),
        'deposit_paid': (
            float(order.deposit_paid)
            if order.deposit_paid is not None else None
        ),
        'refund_amount': (
            float(order.refund_amount)
            if order.refund_amount is not None else None
        ),
        'customer_name': order.customer_name,
        'delivery_address': order.delivery_address,
        'notes': order.notes,
        'cancellation_reason': order.cancellation_reason,
        'cancelled_at': (
            order.cancelled_at.isoformat() if order.cancelled_at else None
        ),
        'can_cancel': messaging.can_cancel(order),
        'can_reorder': messaging.can_reorder(order),
        'created_at': order.created_at.isoformat(),
    }
    if with_items:
        payload['items'] = [{
            'menu_item_id': item.menu_item_id,
            'name': item.name,
            'unit_price': float(item.unit_price),
            'quantity': item.quantity,
        } for item in order.items]
    return payload


@bp.route('/api/orders', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def place_order():
    data = request.get_json(silent=True) or {}
    lines = data.get('items') or []
    if not isinstance(lines, list) or not lines:
        return jsonify({'error': 'Order must contain at least one item'}), 400

    try:
        order_type = OrderType(data.get('order_type', 'pickup'))
    except ValueError:
        return jsonify({'error': 'Invalid order type'}), 400

    delivery_address = (data.get('delivery_address') or '').strip() or None
    if order_type == OrderType.DELIVERY and not delivery_address:
        return jsonify(
            {'error': 'Delivery address is required for delivery'}), 400

    # Validate lines before anything is written
    resolved = []
    for line in lines:
        try:
            menu_item_id = int(line.get('menu_item_id'))
            quantity = int(line.get('quantity', 1))
        except (TypeError, ValueError, AttributeError):
            return jsonify({'error': 'Invalid order item'}), 400
        if quantity <= 0:
            return jsonify({'error': 'Quantity must be positive'}), 400
        menu_item = db.session.get(MenuItem, menu_item_id)
        if menu_item is None or not menu_item.is_available:
            return jsonify(
                {'error': f'Menu item {menu_item_id} is not available'}), 400
        resolved.append((menu_item, quantity))

    total = sum(
        (to_money(item.price) * quantity for item, quantity in resolved),
        to_money(0))

    deposit_paid = data.get('deposit_paid')
    if deposit_paid is not None:
        try:
            deposit_paid = to_money(deposit_paid)
        except ArithmeticError:
            return jsonify({'error': 'Invalid deposit amount'}), 400
        if deposit_paid < 0 or deposit_paid > total:
            return jsonify(
                {'error': 'Deposit must be between 0 and the total'}), 400

    if deposit_paid is None:
        payment_status = PaymentStatus.PENDING
    elif deposit_paid >= total:
        payment_status = PaymentStatus.PAID
    else:
        payment_status = PaymentStatus.PARTIAL

    now = datetime.utcnow()
    fields = dict(
        user_id=current_user.id,
        customer_name=current_user.display_name,
        customer_email=current_user.email,
        customer_phone=current_user.phone,
        total_amount=total,
        deposit_paid=deposit_paid,
        order_type=order_type,
        delivery_address=delivery_address,
        notes=(data.get('notes') or '').strip() or None,
        status=OrderStatus.PENDING,
        payment_status=payment_status,
        created_at=now,
    )
    try:
        order = _insert_order(now, fields)
        if order is None:
            return jsonify(
                {'error': 'Could not number the order, please retry'}), 409
        for menu_item, quantity in resolved:
            db.session.add(OrderItem(
                order_id=order.id,
                menu_item_id=menu_item.id,
                name=menu_item.name,
                unit_price=menu_item.price,
                quantity=quantity,
            ))
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('place the order')

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='ORDER_CREATE',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'order_number': order.order_number,
            'total_amount': float(total),
            'item_count': len(resolved),
        })

    return jsonify({'ok': True, 'order': serialize_order(order)}), 201


@bp.route('/api/orders', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def order_history():
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get(
        'per_page', current_app.config['ITEMS_PER_PAGE'], type=int)
    status = (request.args.get('status') or 'all').lower()
    sort = request.args.get('sort', 'newest')

    query = Order.query.filter_by(user_id=current_user.id)
    if status != 'all':
        try:
            query = query.filter(Order.status == OrderStatus(status))
        except ValueError:
            return jsonify({'error': 'Unknown order status'}), 400
    if sort not in ORDER_SORTS:
        return jsonify({'error': 'Unknown sort order'}), 400

    result = paginate_query(
        query.order_by(ORDER_SORTS[sort], Order.id.desc()),
        page=page,
        per_page=per_page)

    return jsonify({
        'items': [serialize_order(o) for o in result['items']],
        'page': result['page'],
        'pages': result['pages'],
        'total': result['total'],
    })


@bp.route('/api/orders/<int:order_id>', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def order_detail(order_id):
    order = _own_order(order_id)
    return jsonify(serialize_order(order))


@bp.route('/api/orders/<int:order_id>/refund-quote', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def refund_quote(order_id):
    order = _own_order(order_id)
    if not messaging.can_cancel(order):
        return jsonify(
            {'error': 'Order status does not allow cancellation'}), 400

    policy = refund_policy()
    try:
        decision = compute_refund(order, policy=policy)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    return jsonify({
        'order_id': order.id,
        'refund_amount': float(decision.refund_amount),
        'base': float(decision.base),
        'is_partial': decision.is_partial,
        'elapsed_minutes': decision.elapsed_minutes,
        'advisory': refund_advisory(decision, policy),
        'reasons': messaging.CANCELLATION_REASONS,
    })


@bp.route('/api/orders/<int:order_id>/cancel-request', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def request_cancellation(order_id):
    order = _own_order(order_id)
    data = request_data()
    policy = refund_policy()

    try:
        msg, decision = messaging.request_cancellation(
            order,
            actor_id=current_user.id,
            reason=data.get('reason'),
            refund_details=data.get('refund_details'),
            custom_reason=data.get('custom_reason'),
            policy=policy,
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        return store_error_response('submit the cancellation request')

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='CANCELLATION_REQUEST',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'message_id': msg.id,
            'reason': msg.cancellation_reason,
            'refund_amount': decision.refund_amount,
            'is_partial': decision.is_partial,
        })

    return jsonify({
        'ok': True,
        'message_id': msg.id,
        'refund_amount': float(decision.refund_amount),
        'is_partial': decision.is_partial,
        'advisory': refund_advisory(decision, policy),
    }), 201


@bp.route('/api/orders/<int:order_id>/reorder-request', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def request_reorder(order_id):
    order = _own_order(order_id)
    try:
        msg = messaging.request_reorder(
            order, actor_id=current_user.id, policy=refund_policy())
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        return store_error_response('submit the reorder request')

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='REORDER_REQUEST',
        target_type='ORDER',
        target_id=order.id,
        payload={'message_id': msg.id})

    return jsonify({'ok': True, 'message_id': msg.id}), 201
