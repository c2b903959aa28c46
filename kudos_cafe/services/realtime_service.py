"""Change notifications for order messages.

Inserts, updates and deletes of ``OrderMessage`` rows are collected while
the session flushes and published on ``message_changed`` once the
transaction commits, so receivers never see rows that are later rolled
back. ``ThreadFeed`` keeps a thread list current by merging each change
instead of re-running the whole inbox query.
"""
from dataclasses import dataclass
import logging
import threading
import time

from blinker import Namespace
from sqlalchemy import event
from sqlalchemy.orm import Session, object_session

from kudos_cafe.models import OrderMessage
from kudos_cafe.services.conversations import (
    CHANGE_DELETE,
    CHANGE_INSERT,
    CHANGE_UPDATE,
    MessageView,
    apply_change,
)

logger = logging.getLogger(__name__)

_signals = Namespace()
message_changed = _signals.signal('order-message-changed')

_PENDING_KEY = 'kudos_pending_message_changes'


@dataclass(frozen=True)
class MessageChange:
    event: str
    message_id: int
    order_id: object


def _queue(kind):
    def listener(mapper, connection, target):
        session = object_session(target)
        if session is None:
            return
        session.info.setdefault(_PENDING_KEY, []).append(
            MessageChange(kind, target.id, target.order_id))
    return listener


_on_insert = _queue(CHANGE_INSERT)
_on_update = _queue(CHANGE_UPDATE)
_on_delete = _queue(CHANGE_DELETE)


def _flush_changes(session):
    changes = session.info.pop(_PENDING_KEY, [])
    for change in changes:
        message_changed.send(change)


def _drop_changes(session):
    session.info.pop(_PENDING_KEY, None)


def _log_change(change):
    logger.debug(
        "order message %s: id=%s order=%s",
        change.event,
        change.message_id,
        change.order_id,
    )


def init_app(app):
    listeners = (
        (OrderMessage, 'after_insert', _on_insert),
        (OrderMessage, 'after_update', _on_update),
        (OrderMessage, 'after_delete', _on_delete),
        (Session, 'after_commit', _flush_changes),
        (Session, 'after_rollback', _drop_changes),
    )
    for target, name, fn in listeners:
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)
    message_changed.connect(_log_change)
    app.extensions['kudos_realtime'] = message_changed


class ThreadFeed:
    """Thread list for one viewer, kept current from ``message_changed``.

    Changes arrive right after a commit, when the session cannot run
    queries, so ``receive`` only queues them and ``sync`` applies them.
    ``loader`` turns a message id into a ``MessageView`` (or None when the
    row is gone or not visible to this viewer). Use as a context manager
    so the subscription is dropped when the caller is done with it.

    Commits from other request threads call ``receive`` on their own
    thread; ``poll`` blocks the viewer's thread until one of them lands.
    """

    def __init__(self, threads, loader, viewer_id=None, inbox=False):
        self.threads = list(threads)
        self.loader = loader
        self.viewer_id = viewer_id
        self.inbox = inbox
        self.pending = []
        self._lock = threading.Lock()
        self._arrived = threading.Event()

    def connect(self):
        message_changed.connect(self.receive)
        return self

    def disconnect(self):
        message_changed.disconnect(self.receive)

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()

    def receive(self, change):
        with self._lock:
            self.pending.append(change)
            self._arrived.set()

    def wait(self, timeout=None) -> bool:
        """Block until a change is queued; False if ``timeout`` ran out."""
        return self._arrived.wait(timeout)

    def _take_pending(self):
        with self._lock:
            changes, self.pending = self.pending, []
            self._arrived.clear()
        return changes

    def _known(self, message_id):
        for thread in self.threads:
            for message in thread.messages:
                if message.id == message_id:
                    return message
        return None

    def _apply(self, changes) -> int:
        applied = 0
        for change in changes:
            kind = change.event
            if kind == CHANGE_DELETE:
                view = self._known(change.message_id)
            else:
                view = self.loader(change.message_id)
                if view is None and kind == CHANGE_UPDATE:
                    # Archived away or moved out of this viewer's reach
                    view = self._known(change.message_id)
                    kind = CHANGE_DELETE
            if view is None:
                continue
            if not isinstance(view, MessageView):
                raise TypeError('loader must return MessageView or None')
            self.threads = apply_change(
                self.threads, kind, view,
                viewer_id=self.viewer_id, inbox=self.inbox)
            applied += 1
        return applied

    def sync(self):
        self._apply(self._take_pending())
        return self.threads

    def poll(self, timeout, idle=None) -> bool:
        """Wait up to ``timeout`` seconds for a change this viewer sees.

        Changes the loader hides do not end the wait. ``idle`` runs
        before every block, typically to end the read transaction.
        Returns True as soon as ``threads`` has been updated.
        """
        deadline = time.monotonic() + max(timeout, 0)
        while True:
            if self._apply(self._take_pending()):
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            if idle is not None:
                idle()
            self.wait(remaining)
