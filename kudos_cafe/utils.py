from flask import current_app, jsonify, request
from sqlalchemy import func
from kudos_cafe.extensions import db
from kudos_cafe.models import Review
from kudos_cafe.services.refund_policy import RefundPolicy
import logging
import math

logger = logging.getLogger(__name__)


def wants_json_response() -> bool:
    accept = request.headers.get('Accept', '') or ''
    xrw = request.headers.get('X-Requested-With')
    return (
        request.path.startswith('/api/')
        or request.is_json
        or ('application/json' in accept)
        or (xrw == 'XMLHttpRequest')
    )


def request_data():
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def wait_timeout() -> float:
    """Seconds a long-poll may block, from ``?timeout=``, clamped."""
    limit = current_app.config['MESSAGE_WAIT_MAX_SECONDS']
    timeout = request.args.get('timeout', limit, type=float)
    if not math.isfinite(timeout):
        return float(limit)
    return min(max(timeout, 0.0), float(limit))


def paginate_query(query, page=1, per_page=20):
    pagination = query.paginate(
        page=page,
        per_page=per_page,
        error_out=False
    )
    return {
        'items': pagination.items,
        'page': pagination.page,
        'pages': pagination.pages,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'has_next': pagination.has_next,
        'has_prev': pagination.has_prev
    }


def get_menu_rating_summary(menu_item_ids):
    if not menu_item_ids:
        return {}

    rows = db.session.query(
        Review.menu_item_id,
        Review.rating,
        func.count(Review.id)
    ).filter(
        Review.menu_item_id.in_(menu_item_ids),
        Review.is_approved.is_(True)
    ).group_by(Review.menu_item_id, Review.rating).all()

    summary = {}
    for menu_item_id, rating, count in rows:
        entry = summary.setdefault(menu_item_id, {'count': 0, 'sum': 0})
        entry['count'] += count
        entry['sum'] += rating * count

    for menu_item_id, entry in summary.items():
        total = entry['count']
        summary[menu_item_id] = {
            'avg': round(entry['sum'] / total, 1) if total else 0.0,
            'count': total,
        }

    return summary


def store_error_response(action: str):
    """Roll back and answer 500 after a failed database write."""
    db.session.rollback()
    logger.error("Database error while trying to %s", action, exc_info=True)
    return jsonify({
        'error': f'Could not {action}, please try again later'
    }), 500


def refund_policy():
    return RefundPolicy.from_config(current_app.config)
