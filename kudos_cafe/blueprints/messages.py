from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError
from kudos_cafe.extensions import db
from kudos_cafe.models import Order, OrderMessage
from kudos_cafe.middleware import role_required
from kudos_cafe.services import order_message_service as messaging
from kudos_cafe.services.conversations import build_threads
from kudos_cafe.services.realtime_service import ThreadFeed
from kudos_cafe.utils import (
    parse_bool,
    request_data,
    store_error_response,
    wait_timeout,
)
from functools import partial
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('messages', __name__)


@bp.route('/api/messages', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def list_threads():
    archived = parse_bool(request.args.get('archived'))
    after_id = request.args.get('after_id', type=int)

    views = messaging.load_customer_messages(
        current_user.id, archived=archived, after_id=after_id)

    # Polling clients ask only for what arrived after their last id and
    # merge it themselves.
    if after_id:
        return jsonify({
            'items': [messaging.serialize_message(v) for v in views],
        })

    threads = build_threads(views, current_user.id)
    return jsonify({
        'threads': [messaging.serialize_thread(t) for t in threads],
        'unread_threads': sum(1 for t in threads if t.has_unread),
    })


@bp.route('/api/messages/wait', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def wait_for_messages():
    """Long-poll: answer once the customer's threads change.

    Clients pass the newest message id they hold as ``after_id`` so a
    message that landed between two polls is returned straight away.
    """
    archived = parse_bool(request.args.get('archived'))
    after_id = request.args.get('after_id', type=int)
    timeout = wait_timeout()
    user_id = current_user.id

    loader = partial(
        messaging.load_message, user_id=user_id, archived=archived)
    # Subscribe before loading so nothing committed in between is lost
    with ThreadFeed([], loader, viewer_id=user_id) as feed:
        views = messaging.load_customer_messages(user_id, archived=archived)
        feed.threads = build_threads(views, user_id)
        missed = after_id is not None and any(v.id > after_id for v in views)
        changed = missed or feed.poll(timeout, idle=db.session.rollback)

    threads = feed.threads
    return jsonify({
        'changed': changed,
        'threads': [messaging.serialize_thread(t) for t in threads],
        'unread_threads': sum(1 for t in threads if t.has_unread),
        'last_id': max(
            (m.id for t in threads for m in t.messages), default=None),
    })


@bp.route('/api/messages/<int:order_id>/reply', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def reply(order_id):
    order = Order.query.filter_by(
        id=order_id,
        user_id=current_user.id,
    ).first_or_404()
    data = request_data()

    parent_id = data.get('parent_message_id')
    try:
        parent_id = int(parent_id) if parent_id else None
    except (TypeError, ValueError):
        return jsonify({'error': 'Invalid parent message'}), 400

    try:
        msg = messaging.reply_as_customer(
            order,
            actor_id=current_user.id,
            text=data.get('message'),
            parent_message_id=parent_id,
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        return store_error_response('send the message')

    return jsonify({'ok': True, 'message_id': msg.id}), 201


@bp.route('/api/messages/<int:message_id>/read', methods=['POST'])
@login_required
def mark_read(message_id):
    msg = db.session.get(OrderMessage, message_id)
    if msg is None:
        return jsonify({'error': 'Message not found'}), 404
    try:
        messaging.mark_read(msg, current_user)
    except PermissionError as e:
        return jsonify({'error': str(e)}), 403
    except SQLAlchemyError:
        return store_error_response('update the message')
    return jsonify({'ok': True})


def _set_archived(order_id, archived):
    try:
        changed = messaging.set_archived(
            order_id, current_user, archived=archived)
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except PermissionError as e:
        return jsonify({'error': str(e)}), 403
    except SQLAlchemyError:
        return store_error_response('update the conversation')
    return jsonify({'ok': True, 'updated': changed})


@bp.route('/api/messages/<int:order_id>/archive', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def archive(order_id):
    return _set_archived(order_id, True)


@bp.route('/api/messages/<int:order_id>/unarchive', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def unarchive(order_id):
    return _set_archived(order_id, False)
