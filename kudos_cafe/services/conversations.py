"""Group flat order messages into conversation threads.

Everything here works on ``MessageView`` records built at the data
boundary (see ``order_message_service.message_view``), so the grouping
rules can be exercised without a database or a logged-in user.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)

CONTACT_INQUIRY = 'contact_inquiry'

CHANGE_INSERT = 'INSERT'
CHANGE_UPDATE = 'UPDATE'
CHANGE_DELETE = 'DELETE'


@dataclass(frozen=True)
class OrderSummary:
    order_number: str
    status: str
    total_amount: Decimal
    deposit_paid: Optional[Decimal]
    order_type: str
    customer_name: Optional[str]
    customer_email: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class MessageView:
    id: int
    order_id: Optional[int]
    sender_id: Optional[int]
    message_type: str
    body: str
    created_at: datetime
    is_read: bool = False
    is_urgent: bool = False
    archived: bool = False
    subject: Optional[str] = None
    recipient_id: Optional[int] = None
    parent_message_id: Optional[int] = None
    cancellation_reason: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    sender_name: Optional[str] = None
    sender_is_admin: bool = False
    order_number: Optional[str] = None
    order: Optional[OrderSummary] = None


@dataclass
class ConversationThread:
    order_id: object
    order_number: str
    last_message_at: datetime
    messages: List[MessageView] = field(default_factory=list)
    has_unread: bool = False
    unread_count: int = 0
    has_urgent: bool = False
    is_inquiry: bool = False
    order: Optional[OrderSummary] = None


def _thread_label(message: MessageView) -> str:
    return message.order_number or f"Order #{message.order_id}"


def _unread_for_viewer(viewer_id):
    def rule(message):
        return not message.is_read and message.sender_id != viewer_id
    return rule


def _unread_for_staff(message):
    return not message.is_read and not message.sender_is_admin


def thread_key(message: MessageView, inquiries_apart=False):
    """Key of the thread a message belongs to, or None when it has none.

    Contact inquiries carry no order; in the staff inbox each one opens
    its own thread and replies to it follow their parent there.
    """
    if inquiries_apart:
        if message.message_type == CONTACT_INQUIRY:
            return f"inquiry_{message.id}"
        if message.order_id is None and message.parent_message_id:
            return f"inquiry_{message.parent_message_id}"
    return message.order_id


def _group(messages, unread_rule, inquiries_apart=False):
    threads = {}
    for message in messages:
        key = thread_key(message, inquiries_apart)
        if key is None:
            logger.warning(
                "Skipping message %s without an order reference",
                message.id)
            continue

        thread = threads.get(key)
        if thread is None:
            is_inquiry = str(key).startswith('inquiry_')
            thread = ConversationThread(
                order_id=key,
                order_number=(
                    'Contact Inquiry' if is_inquiry
                    else _thread_label(message)
                ),
                last_message_at=message.created_at,
                is_inquiry=is_inquiry,
                order=message.order,
            )
            threads[key] = thread

        thread.messages.append(message)
        if message.created_at > thread.last_message_at:
            thread.last_message_at = message.created_at
        if unread_rule(message):
            thread.has_unread = True
            thread.unread_count += 1
        if message.is_urgent:
            thread.has_urgent = True

    for thread in threads.values():
        # list.sort is stable, equal timestamps keep input order.
        thread.messages.sort(key=lambda m: m.created_at)

    return sorted(
        threads.values(),
        key=lambda t: t.last_message_at,
        reverse=True)


def build_threads(messages, viewer_id) -> List[ConversationThread]:
    """Customer view: one thread per order, newest activity first.

    A thread is unread when the other party sent something the viewer
    has not read yet; the viewer's own unread messages do not count.
    """
    return _group(messages, _unread_for_viewer(viewer_id))


def build_inbox(messages) -> List[ConversationThread]:
    """Staff view: order threads plus one thread per contact inquiry.

    Unread counts only include messages from customers (or anonymous
    contact senders), since staff replies are unread until the customer
    opens them.
    """
    return _group(messages, _unread_for_staff, inquiries_apart=True)


def sort_threads(threads, sort_by='date', descending=True):
    if sort_by == 'order':
        return sorted(
            threads,
            key=lambda t: t.order_number or '',
            reverse=descending)
    return sorted(
        threads,
        key=lambda t: t.last_message_at,
        reverse=descending)


def apply_change(threads, event, message: MessageView, viewer_id=None,
                 inbox=False) -> List[ConversationThread]:
    """Merge one changed row into an already built thread list.

    Only the thread the row belongs to is regrouped, the others are
    reused as they are. An UPDATE replaces the previous copy of the
    row (last write wins); a DELETE that empties a thread drops it.
    """
    if event not in (CHANGE_INSERT, CHANGE_UPDATE, CHANGE_DELETE):
        raise ValueError(f'Unknown change event: {event}')

    affected = None
    untouched = []
    for thread in threads:
        if any(m.id == message.id for m in thread.messages):
            affected = thread
        else:
            untouched.append(thread)

    remaining = []
    if affected is not None:
        remaining = [m for m in affected.messages if m.id != message.id]

    if event != CHANGE_DELETE:
        target_key = thread_key(message, inquiries_apart=inbox)
        for thread in list(untouched):
            if thread.order_id == target_key:
                untouched.remove(thread)
                remaining.extend(thread.messages)
        remaining.append(message)

    if inbox:
        rebuilt = build_inbox(remaining)
    else:
        rebuilt = build_threads(remaining, viewer_id)

    return sorted(
        untouched + rebuilt,
        key=lambda t: t.last_message_at,
        reverse=True)

