"""Audit trail for account, order and message actions.

Every call stores an ``AuditLog`` row and writes one line to the module
logger. Actions touching money or order state are also copied to the
``major_events`` log file so they survive database resets.
"""
from kudos_cafe.extensions import db
from kudos_cafe.models import AuditLog
from flask import request, has_request_context
from sqlalchemy.exc import SQLAlchemyError
import logging
import json

logger = logging.getLogger(__name__)

MAJOR_EVENTS_FILE = 'major_events.log'
PAYLOAD_PREVIEW_CHARS = 600

MAJOR_ACTION_PREFIXES = (
    'LOGIN',
    'LOGOUT',
    'REGISTER',
    'ORDER_',
    'CANCELLATION_',
    'REORDER_',
    'USER_UPDATE',
)


def _major_events_logger():
    major = logging.getLogger('major_events')
    if not major.handlers:
        handler = logging.FileHandler(MAJOR_EVENTS_FILE)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s'))
        major.addHandler(handler)
        major.setLevel(logging.INFO)
        major.propagate = False
    return major


def _request_details():
    if not has_request_context():
        return {}
    return {
        'ip': request.remote_addr,
        'user_agent': request.headers.get('User-Agent'),
        'method': request.method,
        'path': request.path,
    }


def _preview(payload):
    if payload is None:
        return None
    text = json.dumps(
        payload, ensure_ascii=False, default=str, separators=(',', ':'))
    if len(text) > PAYLOAD_PREVIEW_CHARS:
        text = text[:PAYLOAD_PREVIEW_CHARS] + '...'
    return text


def is_major_action(action: str) -> bool:
    return bool(action) and action.startswith(MAJOR_ACTION_PREFIXES)


def log_audit(actor_id=None, actor_role='ANONYMOUS', action='',
              target_type=None, target_id=None, payload=None):
    details = _request_details()
    entry = AuditLog(
        actor_id=actor_id,
        actor_role=actor_role,
        action=action,
        target_type=target_type,
        target_id=target_id,
        ip=details.get('ip'),
        user_agent=details.get('user_agent'),
    )
    if payload:
        entry.set_payload(payload)

    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        # The action itself already committed; only the trail is lost.
        db.session.rollback()
        logger.error("Could not store audit entry %s for %s %s",
                     action, target_type, target_id, exc_info=True)

    summary = (
        f"action={action} actor_role={actor_role} actor_id={actor_id} "
        f"target={target_type}:{target_id}"
    )
    preview = _preview(payload)
    logger.info("AUDIT %s method=%s path=%s payload=%s", summary,
                details.get('method'), details.get('path'), preview)
    if is_major_action(action):
        _major_events_logger().info("%s payload=%s", summary, preview)
