"""Order messaging: cancellation and reorder requests, staff replies.

Every operation here is one commit against the database. Validation
problems raise ``ValueError`` before anything is written, ownership
problems raise ``PermissionError``, and database failures roll the
session back and propagate as ``SQLAlchemyError`` for the caller to
report.
"""
from datetime import datetime
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from kudos_cafe.extensions import db
from kudos_cafe.models import (
    MessageType,
    Order,
    OrderMessage,
    OrderStatus,
    PaymentStatus,
    User,
    UserRole,
)
from kudos_cafe.services import reservation_service
from kudos_cafe.services.conversations import MessageView, OrderSummary
from kudos_cafe.services.refund_policy import (
    RefundPolicy,
    compute_refund,
    format_money,
    refund_base,
    to_money,
)

logger = logging.getLogger(__name__)

OTHER_REASON = 'Other (please specify)'
CANCELLATION_REASONS = [
    'Change of plans',
    'Found better option elsewhere',
    'Emergency situation',
    'Wrong order placed',
    'Pricing concerns',
    'Location/timing issues',
    OTHER_REASON,
]

MESSAGE_TEMPLATES = {
    'confirmation': (
        "Your order has been confirmed and is being prepared. "
        "We'll notify you when it's ready!"
    ),
    'ready_pickup': (
        "Your order is ready for pickup! Please come to the restaurant "
        "at your convenience."
    ),
    'ready_delivery': (
        "Your order is ready and out for delivery. "
        "Expected delivery time: 30-45 minutes."
    ),
    'delay': (
        "We're experiencing a slight delay with your order. We apologize "
        "for the inconvenience and expect to have it ready soon."
    ),
    'cancellation': (
        "Unfortunately, we need to cancel your order due to unforeseen "
        "circumstances. We sincerely apologize for the inconvenience."
    ),
    'custom': '',
}

TEMPLATE_SUBJECTS = {
    'confirmation': 'Order Confirmation',
    'ready_pickup': 'Order Ready for Pickup',
    'ready_delivery': 'Order Out for Delivery',
    'delay': 'Order Delay Notice',
    'cancellation': 'Order Cancellation',
}
DEFAULT_SUBJECT = 'Order Update'

APPROVED_SUBJECT = 'Cancellation Approved'
DENIED_SUBJECT = 'Cancellation Request Denied'
DENIED_BODY = (
    'Your cancellation request has been reviewed and cannot be approved '
    'at this time. Please contact us directly if you have any questions.'
)

CANCELLABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)
REORDERABLE_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


def can_cancel(order) -> bool:
    return order.status in CANCELLABLE_STATUSES


def can_reorder(order) -> bool:
    return order.status in REORDERABLE_STATUSES


def _commit():
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.error("Order message write failed", exc_info=True)
        raise


def _display_number(order):
    return order.order_number or f"#{order.id}"


# --- Data boundary -------------------------------------------------------

def order_summary(order):
    if order is None:
        return None
    return OrderSummary(
        order_number=_display_number(order),
        status=order.status.value,
        total_amount=to_money(order.total_amount),
        deposit_paid=(
            to_money(order.deposit_paid)
            if order.deposit_paid is not None else None
        ),
        order_type=order.order_type.value,
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        created_at=order.created_at,
    )


def message_view(msg: OrderMessage) -> MessageView:
    sender = msg.sender
    if sender is not None:
        sender_name = sender.display_name
    else:
        sender_name = msg.contact_name or msg.contact_email
    order = msg.order
    return MessageView(
        id=msg.id,
        order_id=msg.order_id,
        sender_id=msg.sender_id,
        message_type=msg.message_type.value,
        body=msg.body,
        created_at=msg.created_at,
        is_read=msg.is_read,
        is_urgent=msg.is_urgent,
        archived=msg.archived,
        subject=msg.subject,
        recipient_id=msg.recipient_id,
        parent_message_id=msg.parent_message_id,
        cancellation_reason=msg.cancellation_reason,
        refund_amount=(
            to_money(msg.refund_amount)
            if msg.refund_amount is not None else None
        ),
        sender_name=sender_name,
        sender_is_admin=bool(sender and sender.is_admin),
        order_number=_display_number(order) if order else None,
        order=order_summary(order),
    )


def _message_query():
    return OrderMessage.query.options(
        joinedload(OrderMessage.order),
        joinedload(OrderMessage.sender),
    )


def load_customer_messages(user_id, archived=False, after_id=None):
    query = _message_query().join(
        Order, OrderMessage.order_id == Order.id
    ).filter(
        Order.user_id == user_id,
        OrderMessage.archived.is_(archived),
    )
    if after_id:
        query = query.filter(OrderMessage.id > after_id)
    rows = query.order_by(OrderMessage.created_at.desc()).all()
    return [message_view(m) for m in rows]


def load_inbox_messages(archived=False, after_id=None):
    query = _message_query().filter(OrderMessage.archived.is_(archived))
    if after_id:
        query = query.filter(OrderMessage.id > after_id)
    rows = query.order_by(OrderMessage.created_at.desc()).all()
    return [message_view(m) for m in rows]


def load_message(message_id, user_id=None, archived=None):
    """Load one message as a view, or None if the viewer cannot see it.

    ``user_id`` limits it to that customer's orders and ``archived`` to
    one side of the archive, matching what the list endpoints return.
    """
    query = _message_query().filter(OrderMessage.id == message_id)
    if user_id is not None:
        query = query.join(
            Order, OrderMessage.order_id == Order.id
        ).filter(Order.user_id == user_id)
    if archived is not None:
        query = query.filter(OrderMessage.archived.is_(archived))
    msg = query.first()
    return message_view(msg) if msg else None


def _json_money(value):
    return float(value) if value is not None else None


def serialize_message(view: MessageView):
    return {
        'id': view.id,
        'order_id': view.order_id,
        'sender_id': view.sender_id,
        'sender_name': view.sender_name,
        'sender_is_admin': view.sender_is_admin,
        'recipient_id': view.recipient_id,
        'parent_message_id': view.parent_message_id,
        'message_type': view.message_type,
        'subject': view.subject,
        'message': view.body,
        'cancellation_reason': view.cancellation_reason,
        'refund_amount': _json_money(view.refund_amount),
        'is_urgent': view.is_urgent,
        'is_read': view.is_read,
        'archived': view.archived,
        'created_at': view.created_at.isoformat(),
    }


def serialize_thread(thread):
    order = None
    if thread.order is not None:
        order = {
            'order_number': thread.order.order_number,
            'status': thread.order.status,
            'total_amount': _json_money(thread.order.total_amount),
            'deposit_paid': _json_money(thread.order.deposit_paid),
            'order_type': thread.order.order_type,
            'customer_name': thread.order.customer_name,
            'customer_email': thread.order.customer_email,
            'created_at': thread.order.created_at.isoformat(),
        }
    return {
        'order_id': thread.order_id,
        'order_number': thread.order_number,
        'last_message_at': thread.last_message_at.isoformat(),
        'has_unread': thread.has_unread,
        'unread_count': thread.unread_count,
        'has_urgent': thread.has_urgent,
        'is_inquiry': thread.is_inquiry,
        'order': order,
        'messages': [serialize_message(m) for m in thread.messages],
    }


# --- Customer side -------------------------------------------------------

def compose_cancellation_reason(reason, custom_reason=None) -> str:
    reason = (reason or '').strip()
    if not reason:
        raise ValueError('Please select a cancellation reason')
    if reason not in CANCELLATION_REASONS:
        raise ValueError('Unknown cancellation reason')
    if reason == OTHER_REASON:
        custom = (custom_reason or '').strip()
        if not custom:
            raise ValueError(
                'Please provide details for your cancellation reason')
        return custom
    return reason


def pending_cancellation_request(order):
    """The newest cancellation request on ``order`` staff has not answered."""
    requests = OrderMessage.query.filter_by(
        order_id=order.id,
        message_type=MessageType.CANCELLATION_REQUEST,
    ).order_by(OrderMessage.created_at.desc()).all()
    for req in requests:
        if not is_request_resolved(req):
            return req
    return None


def is_request_resolved(message: OrderMessage) -> bool:
    return OrderMessage.query.filter(
        OrderMessage.parent_message_id == message.id,
        OrderMessage.message_type == MessageType.ADMIN_RESPONSE,
        OrderMessage.subject.in_([APPROVED_SUBJECT, DENIED_SUBJECT]),
    ).first() is not None


def request_cancellation(order, actor_id, reason, refund_details,
                         custom_reason=None, policy: RefundPolicy = None,
                         now=None):
    """Record a customer's cancellation request for staff to review.

    The order itself is left alone; staff approve or deny the request
    separately. Returns the new message and the refund decision it was
    written with.
    """
    policy = policy or RefundPolicy()
    if not can_cancel(order):
        raise ValueError('Order status does not allow cancellation')

    final_reason = compose_cancellation_reason(reason, custom_reason)
    details = (refund_details or '').strip()
    if not details:
        raise ValueError('Please provide your refund details')

    if pending_cancellation_request(order) is not None:
        raise ValueError(
            'A cancellation request for this order is already under review')

    decision = compute_refund(order, now=now, policy=policy)
    body = (
        "Customer has requested to cancel this order.\n\n"
        f"Reason: {final_reason}\n\n"
        f"Refund Amount: {format_money(decision.refund_amount, policy)}\n\n"
        f"Refund Details:\n{details}"
    )
    msg = OrderMessage(
        order_id=order.id,
        sender_id=actor_id,
        message_type=MessageType.CANCELLATION_REQUEST,
        subject=f"Cancellation Request - {_display_number(order)}",
        body=body,
        cancellation_reason=final_reason,
        refund_amount=decision.refund_amount,
        refund_details=details,
        is_urgent=True,
    )
    db.session.add(msg)
    _commit()
    logger.info(
        "Cancellation requested for order %s (refund %s, partial=%s)",
        order.id, decision.refund_amount, decision.is_partial)
    return msg, decision


def _item_lines(order, policy):
    lines = []
    for item in order.items:
        line_total = to_money(item.unit_price) * item.quantity
        lines.append(
            f"{item.quantity}x {item.name} - "
            f"{format_money(line_total, policy)}")
    return '\n'.join(lines)


def request_reorder(order, actor_id, policy: RefundPolicy = None):
    policy = policy or RefundPolicy()
    if not can_reorder(order):
        raise ValueError('Only delivered or cancelled orders can be reordered')

    number = _display_number(order)
    body = (
        "Customer has requested to reorder this order.\n\n"
        f"Original Order: {number}\n"
        f"Order Date: {order.created_at:%d %b %Y %H:%M}\n"
        f"Total Amount: {format_money(order.total_amount, policy)}\n"
        f"Order Type: {order.order_type.value.replace('_', ' ')}\n\n"
        f"Items:\n{_item_lines(order, policy)}\n\n"
        "Please confirm if this order can be processed again."
    )
    msg = OrderMessage(
        order_id=order.id,
        sender_id=actor_id,
        message_type=MessageType.REORDER_REQUEST,
        subject=f"Reorder Request - {number}",
        body=body,
        is_urgent=False,
    )
    db.session.add(msg)
    _commit()
    return msg


def _last_staff_sender(order_id):
    return db.session.query(OrderMessage.sender_id).join(
        User, OrderMessage.sender_id == User.id
    ).filter(
        OrderMessage.order_id == order_id,
        User.role == UserRole.ADMIN,
    ).order_by(OrderMessage.created_at.desc()).limit(1).scalar()


def reply_as_customer(order, actor_id, text, parent_message_id=None):
    text = (text or '').strip()
    if not text:
        raise ValueError('Message cannot be empty')
    if parent_message_id is not None:
        parent = db.session.get(OrderMessage, parent_message_id)
        if parent is None or parent.order_id != order.id:
            raise ValueError('Parent message does not belong to this order')

    msg = OrderMessage(
        order_id=order.id,
        sender_id=actor_id,
        recipient_id=_last_staff_sender(order.id),
        parent_message_id=parent_message_id,
        message_type=MessageType.CUSTOMER_RESPONSE,
        subject=(
            'Re: Customer Response' if parent_message_id
            else 'Customer Message'
        ),
        body=text,
    )
    db.session.add(msg)
    _commit()
    return msg


def create_contact_inquiry(name, email, subject, text, sender_id=None):
    name = (name or '').strip()
    email = (email or '').strip()
    text = (text or '').strip()
    if not name or not email or not text:
        raise ValueError('Name, email and message are required')
    if '@' not in email:
        raise ValueError('Please provide a valid email address')

    msg = OrderMessage(
        order_id=None,
        sender_id=sender_id,
        message_type=MessageType.CONTACT_INQUIRY,
        subject=(subject or '').strip() or 'Contact Inquiry',
        body=text,
        contact_name=name,
        contact_email=email,
    )
    db.session.add(msg)
    _commit()
    return msg


# --- Shared --------------------------------------------------------------

def mark_read(message: OrderMessage, user):
    """Flip ``is_read`` for a message addressed to ``user``.

    Messages without an explicit recipient can be marked by anyone on
    the receiving side: staff for customer messages, the order owner
    for staff messages.
    """
    if message.sender_id == user.id:
        raise PermissionError('Cannot mark your own message as read')
    if message.recipient_id is not None:
        allowed = message.recipient_id == user.id
    elif user.is_admin:
        allowed = True
    else:
        allowed = (
            message.order is not None
            and message.order.user_id == user.id
        )
    if not allowed:
        raise PermissionError('No permission to update this message')

    if not message.is_read:
        message.is_read = True
        _commit()
    return message


def set_archived(order_id, user, archived=True) -> int:
    order = db.session.get(Order, order_id)
    if order is None:
        raise LookupError('Order not found')
    if not user.is_admin and order.user_id != user.id:
        raise PermissionError('No permission to update this conversation')

    changed = 0
    for msg in order.messages:
        if msg.archived != archived:
            # Attribute writes, not a bulk UPDATE, so change events fire.
            msg.archived = archived
            changed += 1
    if changed:
        _commit()
    return changed


# --- Staff side ----------------------------------------------------------

def send_order_message(order, actor_id, template='custom', text=None,
                       message_type='general', is_urgent=False):
    if template not in MESSAGE_TEMPLATES:
        raise ValueError('Unknown message template')
    try:
        kind = MessageType(message_type)
    except ValueError:
        raise ValueError('Invalid message type')

    text = (text or '').strip() or MESSAGE_TEMPLATES[template]
    if not text:
        raise ValueError('Message cannot be empty')

    msg = OrderMessage(
        order_id=order.id,
        sender_id=actor_id,
        recipient_id=order.user_id,
        message_type=kind,
        subject=TEMPLATE_SUBJECTS.get(template, DEFAULT_SUBJECT),
        body=text,
        is_urgent=bool(is_urgent),
    )
    db.session.add(msg)
    _commit()
    return msg


def reply_as_admin(message: OrderMessage, actor_id, text):
    text = (text or '').strip()
    if not text:
        raise ValueError('Reply cannot be empty')

    recipient_id = (
        message.order.user_id if message.order is not None
        else message.sender_id
    )
    reply = OrderMessage(
        order_id=message.order_id,
        sender_id=actor_id,
        recipient_id=recipient_id,
        parent_message_id=message.id,
        message_type=MessageType.ADMIN_RESPONSE,
        subject=f"Re: {message.subject or 'Order Inquiry'}",
        body=text,
    )
    db.session.add(reply)
    message.is_read = True
    _commit()
    return reply


def _require_open_request(message: OrderMessage):
    if message.message_type != MessageType.CANCELLATION_REQUEST:
        raise ValueError('Message is not a cancellation request')
    if message.order is None:
        raise ValueError('Cancellation request has no order')
    if is_request_resolved(message):
        raise ValueError('Request already processed')


def approve_cancellation(message: OrderMessage, actor_id,
                         policy: RefundPolicy = None, now=None):
    """Cancel the order and refund the amount quoted in the request."""
    policy = policy or RefundPolicy()
    _require_open_request(message)
    order = message.order
    if not can_cancel(order):
        raise ValueError('Order status does not allow cancellation')

    refund_amount = message.refund_amount
    if refund_amount is None:
        refund_amount = refund_base(order)
    refund_amount = to_money(refund_amount)
    now = now or datetime.utcnow()

    order.status = OrderStatus.CANCELLED
    order.payment_status = PaymentStatus.REFUNDED
    order.refund_amount = refund_amount
    order.cancelled_at = now
    order.cancelled_by = actor_id
    order.cancellation_reason = message.cancellation_reason
    reservation_service.cancel_for_order(order)

    reply = OrderMessage(
        order_id=order.id,
        sender_id=actor_id,
        recipient_id=order.user_id,
        parent_message_id=message.id,
        message_type=MessageType.ADMIN_RESPONSE,
        subject=APPROVED_SUBJECT,
        body=(
            "Your cancellation request has been approved. Your order has "
            "been cancelled and a refund of "
            f"{format_money(refund_amount, policy)} will be processed."
        ),
    )
    db.session.add(reply)
    message.is_read = True
    _commit()
    logger.info(
        "Cancellation approved for order %s, refund %s",
        order.id, refund_amount)
    return reply


def deny_cancellation(message: OrderMessage, actor_id):
    _require_open_request(message)
    order = message.order

    reply = OrderMessage(
        order_id=order.id,
        sender_id=actor_id,
        recipient_id=order.user_id,
        parent_message_id=message.id,
        message_type=MessageType.ADMIN_RESPONSE,
        subject=DENIED_SUBJECT,
        body=DENIED_BODY,
    )
    db.session.add(reply)
    message.is_read = True
    _commit()
    return reply
