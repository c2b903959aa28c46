from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    render_template,
    request,
)
from flask_login import login_required, current_user
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from kudos_cafe.extensions import db
from kudos_cafe.models import (
    DiningTable,
    GalleryImage,
    InventoryItem,
    MenuItem,
    Order,
    OrderMessage,
    OrderStatus,
    Reservation,
    ReservationStatus,
    Review,
    StockMovement,
    User,
    UserRole,
)
from kudos_cafe.middleware import role_required
from kudos_cafe.services import inventory_service
from kudos_cafe.services import order_message_service as messaging
from kudos_cafe.services import reservation_service as bookings
from kudos_cafe.services.audit_service import log_audit
from kudos_cafe.services.conversations import build_inbox, sort_threads
from kudos_cafe.services.realtime_service import ThreadFeed
from kudos_cafe.services.refund_policy import to_money
from kudos_cafe.services.storage_service import (
    delete_image,
    public_url,
    save_image,
)
from kudos_cafe.blueprints.orders import serialize_order
from kudos_cafe.blueprints.public import serialize_menu_item
from kudos_cafe.blueprints.reviews import serialize_review
from kudos_cafe.utils import (
    paginate_query,
    parse_bool,
    refund_policy,
    request_data,
    store_error_response,
    wait_timeout,
    wants_json_response,
)
from datetime import datetime
from functools import partial
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('admin', __name__)

# Staff move orders forward one step at a time; cancellation only goes
# through an approved cancellation request.
STATUS_FLOW = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.DELIVERED,
]

REVIEW_FILTERS = {
    'all': lambda q: q,
    'approved': lambda q: q.filter(Review.is_approved.is_(True)),
    'pending': lambda q: q.filter(Review.is_approved.is_(False)),
    'featured': lambda q: q.filter(Review.is_featured.is_(True)),
}


def _audit(action, target_type, target_id, payload=None):
    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payload=payload,
    )


def _unread_customer_messages():
    return OrderMessage.query.outerjoin(
        User, OrderMessage.sender_id == User.id
    ).filter(
        OrderMessage.is_read.is_(False),
        OrderMessage.archived.is_(False),
        or_(User.id.is_(None), User.role != UserRole.ADMIN),
    ).count()


def _analytics():
    by_status = dict(
        db.session.query(Order.status, func.count(Order.id))
        .group_by(Order.status).all()
    )
    revenue = db.session.query(
        func.coalesce(func.sum(Order.total_amount), 0)
    ).filter(Order.status != OrderStatus.CANCELLED).scalar()
    refunds = db.session.query(
        func.coalesce(func.sum(Order.refund_amount), 0)
    ).filter(Order.status == OrderStatus.CANCELLED).scalar()
    avg_rating = db.session.query(func.avg(Review.rating)).filter(
        Review.is_approved.is_(True)).scalar()

    low_stock = None
    if current_app.config.get('LOW_STOCK_ALERTS_ENABLED'):
        low_stock = len(inventory_service.low_stock_items())

    return {
        'orders_by_status': {
            s.value: by_status.get(s, 0) for s in OrderStatus
        },
        'total_orders': sum(by_status.values()),
        'revenue': float(to_money(revenue)),
        'refunds': float(to_money(refunds)),
        'average_rating': (
            round(float(avg_rating), 1) if avg_rating is not None else None
        ),
        'unread_messages': _unread_customer_messages(),
        'pending_reviews': Review.query.filter_by(is_approved=False).count(),
        'total_customers': User.query.filter_by(
            role=UserRole.CUSTOMER).count(),
        'menu_items': MenuItem.query.count(),
        'low_stock_items': low_stock,
        'pending_reservations': Reservation.query.filter_by(
            status=ReservationStatus.PENDING).count(),
    }


@bp.route('/admin', methods=['GET'])
@bp.route('/admin/dashboard', methods=['GET'])
@login_required
@role_required('ADMIN')
def dashboard():
    stats = _analytics()
    if wants_json_response():
        return jsonify(stats)
    return render_template('admin/dashboard.html', stats=stats)


@bp.route('/api/admin/analytics', methods=['GET'])
@login_required
@role_required('ADMIN')
def analytics():
    return jsonify(_analytics())


# --- Menu ----------------------------------------------------------------

def _apply_menu_fields(item, data, creating=False):
    """Copy validated fields from ``data`` onto ``item``; return an error."""
    if creating or 'name' in data:
        name = (data.get('name') or '').strip()
        if not name:
            return 'Name cannot be empty'
        item.name = name
    if creating or 'category' in data:
        category = (data.get('category') or '').strip()
        if not category:
            return 'Category cannot be empty'
        item.category = category
    if creating or 'price' in data:
        try:
            price = to_money(data.get('price'))
        except ArithmeticError:
            return 'Invalid price'
        if price < 0:
            return 'Price cannot be negative'
        item.price = price
    if 'description' in data:
        item.description = (data.get('description') or '').strip() or None
    if 'dietary_tags' in data:
        tags = data.get('dietary_tags') or []
        if isinstance(tags, str):
            tags = tags.split(',')
        item.dietary_tags = ','.join(
            t.strip() for t in tags if t and t.strip()) or None
    for flag in ('is_available', 'is_popular', 'is_new'):
        if flag in data:
            setattr(item, flag, parse_bool(data.get(flag)))
    return None


@bp.route('/api/admin/menu', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_menu():
    items = MenuItem.query.order_by(
        MenuItem.category.asc(), MenuItem.name.asc()).all()
    return jsonify({'items': [serialize_menu_item(i) for i in items]})


@bp.route('/api/admin/menu', methods=['POST'])
@login_required
@role_required('ADMIN')
def create_menu_item():
    data = request.get_json(silent=True) or {}
    item = MenuItem()
    error = _apply_menu_fields(item, data, creating=True)
    if error:
        return jsonify({'error': error}), 400

    db.session.add(item)
    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('create the menu item')

    _audit('MENU_ITEM_CREATE', 'MENU_ITEM', item.id, {'name': item.name})
    return jsonify({'ok': True, 'item': serialize_menu_item(item)}), 201


@bp.route('/api/admin/menu/<int:item_id>', methods=['PUT', 'PATCH'])
@login_required
@role_required('ADMIN')
def update_menu_item(item_id):
    item = MenuItem.query.get_or_404(item_id)
    data = request.get_json(silent=True) or {}
    error = _apply_menu_fields(item, data)
    if error:
        db.session.rollback()
        return jsonify({'error': error}), 400

    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('update the menu item')

    _audit('MENU_ITEM_UPDATE', 'MENU_ITEM', item.id,
           {'fields': sorted(data.keys())})
    return jsonify({'ok': True, 'item': serialize_menu_item(item)})


@bp.route('/api/admin/menu/<int:item_id>', methods=['DELETE'])
@login_required
@role_required('ADMIN')
def delete_menu_item(item_id):
    item = MenuItem.query.get_or_404(item_id)
    image_path = item.image_path
    db.session.delete(item)
    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('delete the menu item')

    delete_image(image_path)
    _audit('MENU_ITEM_DELETE', 'MENU_ITEM', item_id)
    return jsonify({'ok': True})


@bp.route('/api/admin/menu/<int:item_id>/image', methods=['POST'])
@login_required
@role_required('ADMIN')
def upload_menu_image(item_id):
    item = MenuItem.query.get_or_404(item_id)
    f = request.files.get('image')
    if not f:
        return jsonify({'error': 'image file required'}), 400
    try:
        key = save_image(f, 'menu')
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    old_key = item.image_path
    item.image_path = key
    try:
        db.session.commit()
    except SQLAlchemyError:
        delete_image(key)
        return store_error_response('save the menu image')

    delete_image(old_key)
    return jsonify({'ok': True, 'image_url': public_url(key)})


# --- Gallery -------------------------------------------------------------

@bp.route('/api/admin/gallery', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_gallery():
    images = GalleryImage.query.order_by(
        GalleryImage.created_at.desc()).all()
    return jsonify({
        'items': [{
            'id': g.id,
            'title': g.title,
            'image_url': public_url(g.image_path),
            'is_active': g.is_active,
        } for g in images]
    })


@bp.route('/api/admin/gallery', methods=['POST'])
@login_required
@role_required('ADMIN')
def upload_gallery_image():
    f = request.files.get('image')
    if not f:
        return jsonify({'error': 'image file required'}), 400
    try:
        key = save_image(f, 'gallery')
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    image = GalleryImage(
        title=(request.form.get('title') or '').strip() or None,
        image_path=key,
        uploaded_by=current_user.id,
    )
    db.session.add(image)
    try:
        db.session.commit()
    except SQLAlchemyError:
        delete_image(key)
        return store_error_response('save the gallery image')

    _audit('GALLERY_UPLOAD', 'GALLERY_IMAGE', image.id)
    return jsonify({
        'ok': True,
        'id': image.id,
        'image_url': public_url(key),
    }), 201


@bp.route('/api/admin/gallery/<int:image_id>', methods=['DELETE'])
@login_required
@role_required('ADMIN')
def delete_gallery_image(image_id):
    image = GalleryImage.query.get_or_404(image_id)
    key = image.image_path
    db.session.delete(image)
    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('delete the gallery image')

    delete_image(key)
    _audit('GALLERY_DELETE', 'GALLERY_IMAGE', image_id)
    return jsonify({'ok': True})


# --- Orders --------------------------------------------------------------

@bp.route('/api/admin/orders', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_orders():
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', 20, type=int)
    status = (request.args.get('status') or '').strip().lower()

    query = Order.query.filter_by(archived=False)
    if status and status != 'all':
        try:
            query = query.filter(Order.status == OrderStatus(status))
        except ValueError:
            return jsonify({'error': 'Unknown order status'}), 400

    result = paginate_query(
        query.order_by(Order.created_at.desc(), Order.id.desc()),
        page=page,
        per_page=per_page)

    items = []
    for order in result['items']:
        payload = serialize_order(order)
        payload['customer_email'] = order.customer_email
        payload['customer_phone'] = order.customer_phone
        items.append(payload)

    return jsonify({
        'items': items,
        'page': result['page'],
        'total': result['total'],
        'pages': result['pages'],
    })


@bp.route('/api/admin/orders/<int:order_id>/status', methods=['PATCH'])
@login_required
@role_required('ADMIN')
def update_order_status(order_id):
    order = Order.query.get_or_404(order_id)
    data = request.get_json(silent=True) or {}
    status_raw = (data.get('status') or '').strip().lower()

    try:
        new_status = OrderStatus(status_raw)
    except ValueError:
        return jsonify({'error': 'Invalid status'}), 400

    old_status = order.status
    if old_status == new_status:
        return jsonify({'ok': True, 'status': order.status.value})

    if new_status not in STATUS_FLOW or old_status not in STATUS_FLOW or \
            STATUS_FLOW.index(new_status) <= STATUS_FLOW.index(old_status):
        return jsonify({
            'error': (
                f'Cannot move order from {old_status.value} '
                f'to {new_status.value}'
            )
        }), 400

    order.status = new_status
    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('update the order status')

    _audit('ORDER_STATUS_UPDATE', 'ORDER', order.id, {
        'from': old_status.value,
        'to': new_status.value,
    })
    return jsonify({'ok': True, 'status': order.status.value})


# --- Messages ------------------------------------------------------------

@bp.route('/api/admin/messages', methods=['GET'])
@login_required
@role_required('ADMIN')
def inbox():
    archived = parse_bool(request.args.get('archived'))
    after_id = request.args.get('after_id', type=int)
    sort_by = request.args.get('sort', 'date')
    descending = request.args.get('order', 'desc') != 'asc'

    if sort_by not in ('date', 'order'):
        return jsonify({'error': 'Unknown sort order'}), 400

    views = messaging.load_inbox_messages(
        archived=archived, after_id=after_id)
    if after_id:
        return jsonify({
            'items': [messaging.serialize_message(v) for v in views],
        })

    threads = sort_threads(
        build_inbox(views), sort_by=sort_by, descending=descending)
    return jsonify({
        'threads': [messaging.serialize_thread(t) for t in threads],
        'unread_total': sum(t.unread_count for t in threads),
        'templates': messaging.MESSAGE_TEMPLATES,
    })


@bp.route('/api/admin/messages/wait', methods=['GET'])
@login_required
@role_required('ADMIN')
def wait_for_inbox():
    archived = parse_bool(request.args.get('archived'))
    after_id = request.args.get('after_id', type=int)
    sort_by = request.args.get('sort', 'date')
    descending = request.args.get('order', 'desc') != 'asc'
    if sort_by not in ('date', 'order'):
        return jsonify({'error': 'Unknown sort order'}), 400
    timeout = wait_timeout()

    loader = partial(messaging.load_message, archived=archived)
    with ThreadFeed([], loader, inbox=True) as feed:
        views = messaging.load_inbox_messages(archived=archived)
        feed.threads = build_inbox(views)
        missed = after_id is not None and any(v.id > after_id for v in views)
        changed = missed or feed.poll(timeout, idle=db.session.rollback)

    threads = sort_threads(
        feed.threads, sort_by=sort_by, descending=descending)
    return jsonify({
        'changed': changed,
        'threads': [messaging.serialize_thread(t) for t in threads],
        'unread_total': sum(t.unread_count for t in threads),
        'last_id': max(
            (m.id for t in threads for m in t.messages), default=None),
    })


@bp.route('/api/admin/orders/<int:order_id>/messages', methods=['POST'])
@login_required
@role_required('ADMIN')
def send_order_message(order_id):
    order = Order.query.get_or_404(order_id)
    data = request_data()
    try:
        msg = messaging.send_order_message(
            order,
            actor_id=current_user.id,
            template=data.get('template') or 'custom',
            text=data.get('message'),
            message_type=data.get('message_type') or 'general',
            is_urgent=parse_bool(data.get('is_urgent')),
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        return store_error_response('send the message')

    _audit('ORDER_MESSAGE_SEND', 'ORDER', order.id,
           {'message_id': msg.id, 'subject': msg.subject})
    return jsonify({'ok': True, 'message_id': msg.id}), 201


@bp.route('/api/admin/messages/<int:message_id>/reply', methods=['POST'])
@login_required
@role_required('ADMIN')
def reply(message_id):
    msg = OrderMessage.query.get_or_404(message_id)
    data = request_data()
    try:
        reply_msg = messaging.reply_as_admin(
            msg, actor_id=current_user.id, text=data.get('message'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        return store_error_response('send the reply')

    return jsonify({'ok': True, 'message_id': reply_msg.id}), 201


@bp.route('/api/admin/messages/<int:message_id>/approve', methods=['POST'])
@login_required
@role_required('ADMIN')
def approve_cancellation(message_id):
    msg = OrderMessage.query.get_or_404(message_id)
    try:
        reply_msg = messaging.approve_cancellation(
            msg, actor_id=current_user.id, policy=refund_policy())
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        return store_error_response('approve the cancellation')

    order = msg.order
    _audit('CANCELLATION_APPROVE', 'ORDER', order.id, {
        'request_id': msg.id,
        'refund_amount': order.refund_amount,
    })
    return jsonify({
        'ok': True,
        'message_id': reply_msg.id,
        'order': serialize_order(order, with_items=False),
    })


@bp.route('/api/admin/messages/<int:message_id>/deny', methods=['POST'])
@login_required
@role_required('ADMIN')
def deny_cancellation(message_id):
    msg = OrderMessage.query.get_or_404(message_id)
    try:
        reply_msg = messaging.deny_cancellation(msg, actor_id=current_user.id)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        return store_error_response('deny the cancellation')

    _audit('CANCELLATION_DENY', 'ORDER', msg.order_id,
           {'request_id': msg.id})
    return jsonify({'ok': True, 'message_id': reply_msg.id})


def _set_archived(order_id, archived):
    try:
        changed = messaging.set_archived(
            order_id, current_user, archived=archived)
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except SQLAlchemyError:
        return store_error_response('update the conversation')
    return jsonify({'ok': True, 'updated': changed})


@bp.route('/api/admin/messages/<int:order_id>/archive', methods=['POST'])
@login_required
@role_required('ADMIN')
def archive(order_id):
    return _set_archived(order_id, True)


@bp.route('/api/admin/messages/<int:order_id>/unarchive', methods=['POST'])
@login_required
@role_required('ADMIN')
def unarchive(order_id):
    return _set_archived(order_id, False)


# --- Users ---------------------------------------------------------------

@bp.route('/api/admin/users', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_users():
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', 20, type=int)
    role_filter = request.args.get('role')

    query = User.query
    if role_filter:
        try:
            query = query.filter_by(role=UserRole[role_filter.upper()])
        except KeyError:
            return jsonify({'error': 'Unknown role'}), 400

    users = query.order_by(User.created_at.desc()).paginate(
        page=page, per_page=per_page, error_out=False
    )

    return jsonify({
        'items': [{
            'id': u.id,
            'email': u.email,
            'full_name': u.full_name,
            'phone': u.phone,
            'role': u.role.value,
            'is_active': u.is_active,
            'order_count': u.orders.count(),
            'created_at': u.created_at.isoformat(),
            'last_login_at': (
                u.last_login_at.isoformat() if u.last_login_at else None
            ),
        } for u in users.items],
        'page': users.page,
        'total': users.total
    })


@bp.route('/api/admin/users/<int:user_id>', methods=['PATCH'])
@login_required
@role_required('ADMIN')
def update_user(user_id):
    if user_id == current_user.id:
        return jsonify({'error': 'You cannot change your own account'}), 400

    user = User.query.get_or_404(user_id)
    data = request.get_json(silent=True) or {}
    if 'role' not in data and 'is_active' not in data:
        return jsonify({'error': 'role or is_active is required'}), 400

    if 'role' in data:
        try:
            user.role = UserRole[(data.get('role') or '').upper()]
        except KeyError:
            return jsonify({'error': 'Invalid role'}), 400
    if 'is_active' in data:
        user.is_active = parse_bool(data.get('is_active'))

    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('update the user')

    _audit('USER_UPDATE', 'USER', user.id, {
        'role': user.role.value,
        'is_active': user.is_active,
    })
    return jsonify({
        'ok': True,
        'role': user.role.value,
        'is_active': user.is_active,
    })


# --- Reviews -------------------------------------------------------------

@bp.route('/api/admin/reviews', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_reviews():
    review_filter = request.args.get('filter', 'all')
    if review_filter not in REVIEW_FILTERS:
        return jsonify({'error': 'Unknown filter'}), 400
    query = REVIEW_FILTERS[review_filter](Review.query)
    reviews = query.order_by(Review.created_at.desc()).all()
    return jsonify({'items': [serialize_review(r) for r in reviews]})


@bp.route('/api/admin/reviews/<int:review_id>/approve', methods=['POST'])
@login_required
@role_required('ADMIN')
def approve_review(review_id):
    review = Review.query.get_or_404(review_id)
    data = request.get_json(silent=True) or {}
    review.is_approved = parse_bool(data.get('approved'), default=True)
    if not review.is_approved:
        review.is_featured = False
    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('update the review')

    _audit('REVIEW_APPROVE', 'REVIEW', review.id,
           {'approved': review.is_approved})
    return jsonify({'ok': True, 'review': serialize_review(review)})


@bp.route('/api/admin/reviews/<int:review_id>/feature', methods=['POST'])
@login_required
@role_required('ADMIN')
def feature_review(review_id):
    review = Review.query.get_or_404(review_id)
    data = request.get_json(silent=True) or {}
    featured = parse_bool(data.get('featured'), default=True)
    if featured and not review.is_approved:
        return jsonify(
            {'error': 'Only approved reviews can be featured'}), 400
    review.is_featured = featured
    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('update the review')

    _audit('REVIEW_FEATURE', 'REVIEW', review.id, {'featured': featured})
    return jsonify({'ok': True, 'review': serialize_review(review)})


@bp.route('/api/admin/reviews/<int:review_id>/response', methods=['PUT'])
@login_required
@role_required('ADMIN')
def respond_to_review(review_id):
    review = Review.query.get_or_404(review_id)
    data = request.get_json(silent=True) or {}
    response = (data.get('response') or '').strip()
    if not response:
        return jsonify({'error': 'Response cannot be empty'}), 400

    review.admin_response = response
    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('save the response')

    _audit('REVIEW_RESPONSE', 'REVIEW', review.id)
    return jsonify({'ok': True, 'review': serialize_review(review)})


@bp.route('/api/admin/reviews/<int:review_id>', methods=['DELETE'])
@login_required
@role_required('ADMIN')
def delete_review(review_id):
    review = Review.query.get_or_404(review_id)
    db.session.delete(review)
    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('delete the review')

    _audit('REVIEW_DELETE', 'REVIEW', review_id)
    return jsonify({'ok': True})


# --- Inventory -----------------------------------------------------------

@bp.route('/api/admin/inventory', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_inventory():
    items = InventoryItem.query.filter_by(is_active=True).order_by(
        InventoryItem.name.asc()).all()
    return jsonify({
        'items': [inventory_service.serialize_item(i) for i in items],
        'low_stock': len([
            i for i in items
            if inventory_service.stock_status(i)
            != inventory_service.IN_STOCK
        ]),
    })


@bp.route('/api/admin/inventory', methods=['POST'])
@login_required
@role_required('ADMIN')
def create_inventory_item():
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        return jsonify({'error': 'Name cannot be empty'}), 400

    sku = (data.get('sku') or '').strip() or None
    if sku and InventoryItem.query.filter_by(sku=sku).first():
        return jsonify({'error': 'SKU already exists'}), 400

    try:
        current_stock = to_money(data.get('current_stock', 0))
        min_stock_level = to_money(data.get('min_stock_level', 0))
        current_price = (
            to_money(data['current_price'])
            if data.get('current_price') is not None else None
        )
    except ArithmeticError:
        return jsonify({'error': 'Invalid number'}), 400
    if current_stock < 0 or min_stock_level < 0:
        return jsonify({'error': 'Stock levels cannot be negative'}), 400

    item = InventoryItem(
        name=name,
        sku=sku,
        category=(data.get('category') or '').strip() or None,
        current_stock=current_stock,
        min_stock_level=min_stock_level,
        current_price=current_price,
        storage_location=(
            (data.get('storage_location') or '').strip() or None
        ),
        unit_of_measurement=(
            (data.get('unit_of_measurement') or '').strip() or None
        ),
    )
    db.session.add(item)
    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('create the inventory item')

    _audit('INVENTORY_CREATE', 'INVENTORY_ITEM', item.id, {'name': name})
    return jsonify({
        'ok': True,
        'item': inventory_service.serialize_item(item),
    }), 201


@bp.route('/api/admin/inventory/export.csv', methods=['GET'])
@login_required
@role_required('ADMIN')
def export_inventory():
    items = InventoryItem.query.filter_by(is_active=True).order_by(
        InventoryItem.name.asc()).all()
    body = inventory_service.export_csv(items)
    filename = f"inventory_{datetime.utcnow():%Y-%m-%d}.csv"
    return Response(
        body,
        mimetype='text/csv',
        headers={
            'Content-Disposition': f'attachment; filename={filename}'
        },
    )


@bp.route('/api/admin/inventory/<int:item_id>/movements', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_stock_movements(item_id):
    item = InventoryItem.query.get_or_404(item_id)
    movements = item.movements.order_by(
        StockMovement.created_at.desc(), StockMovement.id.desc()).all()
    return jsonify({
        'item': inventory_service.serialize_item(item),
        'movements': [
            inventory_service.serialize_movement(m) for m in movements
        ],
    })


@bp.route('/api/admin/inventory/<int:item_id>/movements', methods=['POST'])
@login_required
@role_required('ADMIN')
def record_stock_movement(item_id):
    item = InventoryItem.query.get_or_404(item_id)
    data = request.get_json(silent=True) or {}
    try:
        movement = inventory_service.record_movement(
            item,
            data.get('movement_type'),
            data.get('quantity'),
            actor_id=current_user.id,
            unit_price=data.get('unit_price'),
            reason=data.get('reason'),
        )
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        return store_error_response('record the stock movement')

    _audit('INVENTORY_MOVEMENT', 'INVENTORY_ITEM', item.id, {
        'movement_type': movement.movement_type.value,
        'quantity': float(movement.quantity),
        'current_stock': float(item.current_stock),
    })
    return jsonify({
        'ok': True,
        'item': inventory_service.serialize_item(item),
        'movement': inventory_service.serialize_movement(movement),
    }), 201


# --- Tables and reservations ---------------------------------------------

@bp.route('/api/admin/tables', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_tables():
    tables = DiningTable.query.order_by(DiningTable.table_number.asc()).all()
    return jsonify({
        'items': [bookings.serialize_table(t) for t in tables],
    })


@bp.route('/api/admin/tables', methods=['POST'])
@login_required
@role_required('ADMIN')
def create_table():
    data = request.get_json(silent=True) or {}
    try:
        table_number = int(data.get('table_number'))
        capacity = int(data.get('capacity'))
    except (TypeError, ValueError):
        return jsonify(
            {'error': 'Table number and capacity must be whole numbers'}), 400
    if table_number <= 0 or capacity <= 0:
        return jsonify(
            {'error': 'Table number and capacity must be positive'}), 400
    if DiningTable.query.filter_by(table_number=table_number).first():
        return jsonify({'error': 'Table number already exists'}), 400

    table = DiningTable(
        table_number=table_number,
        capacity=capacity,
        location=(data.get('location') or '').strip() or None,
        is_available=parse_bool(data.get('is_available'), default=True),
    )
    db.session.add(table)
    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('create the table')

    _audit('TABLE_CREATE', 'TABLE', table.id, {
        'table_number': table_number,
        'capacity': capacity,
    })
    return jsonify({'ok': True, 'table': bookings.serialize_table(table)}), 201


@bp.route('/api/admin/tables/<int:table_id>', methods=['PATCH'])
@login_required
@role_required('ADMIN')
def update_table(table_id):
    table = DiningTable.query.get_or_404(table_id)
    data = request.get_json(silent=True) or {}

    if 'capacity' in data:
        try:
            capacity = int(data['capacity'])
        except (TypeError, ValueError):
            return jsonify({'error': 'Capacity must be a whole number'}), 400
        if capacity <= 0:
            return jsonify({'error': 'Capacity must be positive'}), 400
        table.capacity = capacity
    if 'location' in data:
        table.location = (data.get('location') or '').strip() or None
    if 'is_available' in data:
        table.is_available = parse_bool(data['is_available'])

    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('update the table')

    _audit('TABLE_UPDATE', 'TABLE', table.id, {
        'capacity': table.capacity,
        'is_available': table.is_available,
    })
    return jsonify({'ok': True, 'table': bookings.serialize_table(table)})


@bp.route('/api/admin/reservations', methods=['GET'])
@login_required
@role_required('ADMIN')
def list_reservations():
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('per_page', 20, type=int)
    status = (request.args.get('status') or '').strip().lower()

    query = Reservation.query
    if status and status != 'all':
        try:
            query = query.filter(
                Reservation.status == ReservationStatus(status))
        except ValueError:
            return jsonify({'error': 'Unknown reservation status'}), 400
    if request.args.get('date'):
        try:
            day = bookings.parse_date(request.args['date'])
        except ValueError as e:
            return jsonify({'error': str(e)}), 400
        query = query.filter(Reservation.reservation_date == day)

    result = paginate_query(
        query.order_by(
            Reservation.reservation_date.desc(),
            Reservation.reservation_time.asc(),
        ),
        page=page,
        per_page=per_page)

    return jsonify({
        'items': [
            bookings.serialize_reservation(r) for r in result['items']
        ],
        'page': result['page'],
        'total': result['total'],
        'pages': result['pages'],
    })


@bp.route(
    '/api/admin/reservations/<int:reservation_id>/status',
    methods=['PATCH'])
@login_required
@role_required('ADMIN')
def update_reservation_status(reservation_id):
    reservation = Reservation.query.get_or_404(reservation_id)
    data = request.get_json(silent=True) or {}
    previous = reservation.status.value
    try:
        bookings.change_status(reservation, data.get('status') or '')
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        return store_error_response('update the reservation')

    _audit('RESERVATION_STATUS', 'RESERVATION', reservation.id, {
        'from': previous,
        'to': reservation.status.value,
    })
    return jsonify({
        'ok': True,
        'reservation': bookings.serialize_reservation(reservation),
    })
