from datetime import datetime
from functools import partial
import threading

import pytest

from kudos_cafe.extensions import db
from kudos_cafe.models import OrderMessage, User
from kudos_cafe.services import order_message_service as messaging
from kudos_cafe.services.conversations import (
    CHANGE_DELETE,
    CHANGE_INSERT,
    CHANGE_UPDATE,
    build_threads,
)
from kudos_cafe.services.realtime_service import (
    MessageChange,
    ThreadFeed,
    message_changed,
)

from conftest import make_order


@pytest.fixture
def order(users, app_ctx):
    return make_order(users['customer'], created_at=datetime(2026, 10, 19))


def _customer_feed(users):
    customer_id = users['customer']
    threads = build_threads(
        messaging.load_customer_messages(customer_id), customer_id)
    return ThreadFeed(
        threads, messaging.load_message, viewer_id=customer_id)


def test_commit_publishes_insert(order, users):
    received = []
    with message_changed.connected_to(received.append):
        msg = messaging.send_order_message(
            order, actor_id=users['admin'], template='confirmation')

    assert received == [MessageChange(CHANGE_INSERT, msg.id, order.id)]


def test_rolled_back_rows_are_never_published(order, users):
    received = []
    with message_changed.connected_to(received.append):
        db.session.add(OrderMessage(
            order_id=order.id, sender_id=users['admin'], body='draft'))
        db.session.flush()
        db.session.rollback()

    assert received == []


def test_update_and_delete_are_published(order, users):
    msg = messaging.send_order_message(
        order, actor_id=users['admin'], template='delay')
    customer = db.session.get(User, users['customer'])

    received = []
    with message_changed.connected_to(received.append):
        messaging.mark_read(msg, customer)
        db.session.delete(msg)
        db.session.commit()

    assert [c.event for c in received] == [CHANGE_UPDATE, CHANGE_DELETE]
    assert {c.message_id for c in received} == {msg.id}


def test_feed_merges_new_messages_on_sync(order, users):
    messaging.send_order_message(
        order, actor_id=users['admin'], template='confirmation')

    with _customer_feed(users) as feed:
        assert len(feed.threads[0].messages) == 1

        later = make_order(
            users['customer'], created_at=datetime(2026, 10, 19, 1))
        reply = messaging.reply_as_customer(
            order, actor_id=users['customer'], text='Thank you!')
        messaging.send_order_message(
            later, actor_id=users['admin'], template='delay')

        assert len(feed.pending) == 2
        threads = feed.sync()

    assert feed.pending == []
    assert [t.order_id for t in threads] == [later.id, order.id]
    assert [m.id for m in threads[1].messages][-1] == reply.id
    assert threads[0].has_unread is True


def test_feed_applies_read_receipts(order, users):
    staff = messaging.send_order_message(
        order, actor_id=users['admin'], template='confirmation')

    with _customer_feed(users) as feed:
        assert feed.threads[0].has_unread is True
        messaging.mark_read(staff, db.session.get(User, users['customer']))
        threads = feed.sync()

    assert threads[0].has_unread is False


def test_feed_stops_listening_after_exit(order, users):
    with _customer_feed(users) as feed:
        pass

    messaging.send_order_message(
        order, actor_id=users['admin'], template='confirmation')
    assert feed.pending == []


def test_feed_skips_rows_the_loader_cannot_see(order, users):
    with ThreadFeed([], lambda message_id: None) as feed:
        messaging.send_order_message(
            order, actor_id=users['admin'], template='confirmation')
        assert feed.sync() == []


def _visible_to(users, key='customer', archived=False):
    return partial(
        messaging.load_message, user_id=users[key], archived=archived)


def test_loader_hides_other_customers_and_archived_messages(order, users):
    msg = messaging.send_order_message(
        order, actor_id=users['admin'], template='confirmation')

    assert _visible_to(users)(msg.id).id == msg.id
    assert _visible_to(users, 'other')(msg.id) is None
    assert _visible_to(users, archived=True)(msg.id) is None


def test_poll_wakes_on_a_change_from_another_thread(order, users):
    msg = messaging.send_order_message(
        order, actor_id=users['admin'], template='confirmation')

    with ThreadFeed([], _visible_to(users),
                    viewer_id=users['customer']) as feed:
        timer = threading.Timer(0.05, message_changed.send, args=(
            MessageChange(CHANGE_INSERT, msg.id, order.id),))
        timer.start()
        try:
            assert feed.poll(5) is True
        finally:
            timer.join()

    assert [m.id for m in feed.threads[0].messages] == [msg.id]


def test_poll_ignores_changes_the_viewer_cannot_see(order, users):
    idled = []
    with ThreadFeed([], _visible_to(users, 'other'),
                    viewer_id=users['other']) as feed:
        messaging.send_order_message(
            order, actor_id=users['admin'], template='delay')
        assert feed.wait(0) is True
        assert feed.poll(0.05, idle=lambda: idled.append(1)) is False

    assert feed.threads == []
    assert feed.pending == []
    assert idled == [1]


def test_wait_times_out_without_changes():
    feed = ThreadFeed([], lambda message_id: None)
    assert feed.wait(0) is False
    assert feed.poll(0) is False


def test_archiving_drops_the_thread_from_the_active_feed(order, users):
    messaging.send_order_message(
        order, actor_id=users['admin'], template='confirmation')
    customer = db.session.get(User, users['customer'])

    with _customer_feed(users) as feed:
        feed.loader = _visible_to(users)
        assert len(feed.threads) == 1
        messaging.set_archived(order.id, customer, archived=True)
        assert feed.poll(0) is True

    assert feed.threads == []
