from datetime import datetime, timedelta
import random

import pytest

from kudos_cafe.services.conversations import (
    CHANGE_DELETE,
    CHANGE_INSERT,
    CHANGE_UPDATE,
    MessageView,
    apply_change,
    build_inbox,
    build_threads,
    sort_threads,
)

T0 = datetime(2026, 10, 19, 8, 0, 0)
CUSTOMER = 7
STAFF = 1


def msg(id, order_id, minutes, sender=CUSTOMER, is_read=False, **kwargs):
    kwargs.setdefault('sender_is_admin', sender == STAFF)
    kwargs.setdefault(
        'order_number',
        f"KC-{order_id}" if order_id is not None else None)
    return MessageView(
        id=id,
        order_id=order_id,
        sender_id=sender,
        message_type=kwargs.pop('message_type', 'general'),
        body=f"message {id}",
        created_at=T0 + timedelta(minutes=minutes),
        is_read=is_read,
        **kwargs,
    )


def ids(thread):
    return [m.id for m in thread.messages]


def test_every_message_lands_in_exactly_one_thread():
    messages = [
        msg(1, 10, 0), msg(2, 20, 1), msg(3, 10, 2),
        msg(4, 30, 3), msg(5, 20, 4),
    ]
    threads = build_threads(messages, CUSTOMER)

    seen = [m.id for t in threads for m in t.messages]
    assert sorted(seen) == [1, 2, 3, 4, 5]
    assert all(t.messages for t in threads)
    assert {t.order_id for t in threads} == {10, 20, 30}


def test_thread_with_latest_message_comes_first():
    # Order A has messages at t1 and t2, order B one at t3, t1 < t3 < t2.
    messages = [msg(1, 'A', 0), msg(2, 'B', 10), msg(3, 'A', 20)]
    threads = build_threads(messages, CUSTOMER)
    assert [t.order_id for t in threads] == ['A', 'B']
    assert threads[0].last_message_at == T0 + timedelta(minutes=20)

    # With t3 after t2, B wins.
    messages = [msg(1, 'A', 0), msg(2, 'B', 30), msg(3, 'A', 20)]
    threads = build_threads(messages, CUSTOMER)
    assert [t.order_id for t in threads] == ['B', 'A']


def test_messages_inside_thread_are_oldest_first():
    messages = [msg(i, 10, i) for i in range(1, 8)]
    shuffled = list(messages)
    random.Random(4).shuffle(shuffled)

    threads = build_threads(shuffled, CUSTOMER)
    assert ids(threads[0]) == [1, 2, 3, 4, 5, 6, 7]


def test_equal_timestamps_keep_input_order():
    messages = [msg(3, 10, 5), msg(1, 10, 5), msg(2, 10, 5)]
    threads = build_threads(messages, CUSTOMER)
    assert ids(threads[0]) == [3, 1, 2]


def test_thread_carries_order_number_label():
    threads = build_threads([msg(1, 10, 0)], CUSTOMER)
    assert threads[0].order_number == 'KC-10'

    unnamed = build_threads([msg(1, 10, 0, order_number=None)], CUSTOMER)
    assert unnamed[0].order_number == 'Order #10'


@pytest.mark.parametrize('messages, expected', [
    # staff message not read yet
    ([msg(1, 10, 0, sender=STAFF)], True),
    # own unread message does not count
    ([msg(1, 10, 0, sender=CUSTOMER)], False),
    # staff message already read
    ([msg(1, 10, 0, sender=STAFF, is_read=True)], False),
    ([msg(1, 10, 0, sender=CUSTOMER),
      msg(2, 10, 1, sender=STAFF, is_read=True),
      msg(3, 10, 2, sender=STAFF)], True),
])
def test_unread_flag_ignores_viewers_own_messages(messages, expected):
    threads = build_threads(messages, CUSTOMER)
    assert threads[0].has_unread is expected


def test_messages_without_order_are_skipped():
    messages = [msg(1, None, 0), msg(2, 10, 1)]
    threads = build_threads(messages, CUSTOMER)
    assert len(threads) == 1
    assert ids(threads[0]) == [2]


def test_empty_input_gives_no_threads():
    assert build_threads([], CUSTOMER) == []


def test_inbox_gives_each_contact_inquiry_its_own_thread():
    messages = [
        msg(1, None, 0, sender=None, message_type='contact_inquiry'),
        msg(2, None, 1, sender=None, message_type='contact_inquiry'),
        msg(3, None, 2, sender=STAFF, parent_message_id=1,
            message_type='admin_response', is_read=False),
        msg(4, 10, 3),
    ]
    threads = build_inbox(messages)

    by_key = {t.order_id: t for t in threads}
    assert set(by_key) == {'inquiry_1', 'inquiry_2', 10}
    assert ids(by_key['inquiry_1']) == [1, 3]
    assert by_key['inquiry_1'].is_inquiry is True
    assert by_key['inquiry_1'].order_number == 'Contact Inquiry'
    assert by_key[10].is_inquiry is False


def test_inbox_counts_unread_customer_messages_and_urgency():
    messages = [
        msg(1, 10, 0, is_urgent=True,
            message_type='cancellation_request'),
        msg(2, 10, 1),
        msg(3, 10, 2, sender=STAFF),
        msg(4, 10, 3, is_read=True),
    ]
    thread = build_inbox(messages)[0]
    assert thread.unread_count == 2
    assert thread.has_unread is True
    assert thread.has_urgent is True


def test_sort_threads_by_order_number():
    messages = [msg(1, 30, 0), msg(2, 10, 1), msg(3, 20, 2)]
    threads = build_threads(messages, CUSTOMER)

    ascending = sort_threads(threads, sort_by='order', descending=False)
    assert [t.order_number for t in ascending] == ['KC-10', 'KC-20', 'KC-30']

    oldest_first = sort_threads(threads, sort_by='date', descending=False)
    assert [t.order_id for t in oldest_first] == [30, 10, 20]


class TestApplyChange:

    def test_insert_matches_full_rebuild(self):
        before = [msg(1, 10, 0), msg(2, 20, 5), msg(3, 10, 10)]
        new = msg(4, 20, 15, sender=STAFF)

        merged = apply_change(
            build_threads(before, CUSTOMER), CHANGE_INSERT, new,
            viewer_id=CUSTOMER)
        assert merged == build_threads(before + [new], CUSTOMER)
        assert merged[0].order_id == 20
        assert merged[0].has_unread is True

    def test_insert_for_new_order_opens_thread(self):
        threads = build_threads([msg(1, 10, 0)], CUSTOMER)
        merged = apply_change(
            threads, CHANGE_INSERT, msg(2, 99, 5), viewer_id=CUSTOMER)
        assert [t.order_id for t in merged] == [99, 10]

    def test_update_replaces_previous_copy(self):
        staff_msg = msg(2, 10, 5, sender=STAFF)
        threads = build_threads([msg(1, 10, 0), staff_msg], CUSTOMER)
        assert threads[0].has_unread is True

        read = msg(2, 10, 5, sender=STAFF, is_read=True)
        merged = apply_change(
            threads, CHANGE_UPDATE, read, viewer_id=CUSTOMER)
        assert ids(merged[0]) == [1, 2]
        assert merged[0].has_unread is False

    def test_delete_of_last_message_drops_thread(self):
        lone = msg(2, 20, 5)
        threads = build_threads([msg(1, 10, 0), lone], CUSTOMER)
        merged = apply_change(
            threads, CHANGE_DELETE, lone, viewer_id=CUSTOMER)
        assert [t.order_id for t in merged] == [10]

    def test_inbox_insert_of_inquiry_reply(self):
        inquiry = msg(1, None, 0, sender=None,
                      message_type='contact_inquiry')
        threads = build_inbox([inquiry, msg(2, 10, 1)])
        reply = msg(3, None, 5, sender=STAFF, parent_message_id=1,
                    message_type='admin_response')

        merged = apply_change(threads, CHANGE_INSERT, reply, inbox=True)
        assert merged == build_inbox([inquiry, msg(2, 10, 1), reply])
        assert ids(merged[0]) == [1, 3]

    def test_unknown_event_is_rejected(self):
        with pytest.raises(ValueError):
            apply_change([], 'TRUNCATE', msg(1, 10, 0))
