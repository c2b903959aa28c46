import logging

from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError

from kudos_cafe.extensions import db
from kudos_cafe.middleware import role_required
from kudos_cafe.models import MenuItem, Order, Review
from kudos_cafe.services.audit_service import log_audit
from kudos_cafe.utils import store_error_response

logger = logging.getLogger(__name__)
bp = Blueprint('reviews', __name__)

PUBLIC_REVIEW_LIMIT = 50


def serialize_review(review, include_user=True):
    payload = {
        'id': review.id,
        'rating': review.rating,
        'comment': review.comment,
        'admin_response': review.admin_response,
        'is_approved': review.is_approved,
        'is_featured': review.is_featured,
        'order_id': review.order_id,
        'menu_item_id': review.menu_item_id,
        'menu_item_name': (
            review.menu_item.name if review.menu_item else None
        ),
        'created_at': review.created_at.isoformat(),
    }
    if include_user:
        payload['user_name'] = (
            review.user.display_name if review.user else None
        )
    return payload


@bp.route('/api/public/reviews', methods=['GET'])
def public_reviews():
    reviews = Review.query.filter_by(is_approved=True).order_by(
        Review.is_featured.desc(),
        Review.created_at.desc(),
    ).limit(PUBLIC_REVIEW_LIMIT).all()
    return jsonify({'items': [serialize_review(r) for r in reviews]})


@bp.route('/api/reviews/mine', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def my_reviews():
    reviews = Review.query.filter_by(user_id=current_user.id).order_by(
        Review.created_at.desc()).all()
    return jsonify({
        'items': [serialize_review(r, include_user=False) for r in reviews]
    })


@bp.route('/api/reviews', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def create_review():
    data = request.get_json(silent=True) or {}
    rating = data.get('rating')
    comment = (data.get('comment') or '').strip()
    order_id = data.get('order_id')
    menu_item_id = data.get('menu_item_id')

    if isinstance(rating, bool) or not isinstance(rating, int) or \
            not (1 <= rating <= 5):
        return jsonify({'error': 'Rating must be between 1 and 5'}), 400
    if not comment:
        return jsonify({'error': 'Comment cannot be empty'}), 400

    if order_id is not None:
        order = Order.query.filter_by(
            id=order_id, user_id=current_user.id).first()
        if order is None:
            return jsonify({'error': 'Order not found'}), 404
        existing = Review.query.filter_by(
            order_id=order_id, user_id=current_user.id).first()
        if existing:
            return jsonify(
                {'error': 'You have already reviewed this order'}), 400

    if menu_item_id is not None and \
            db.session.get(MenuItem, menu_item_id) is None:
        return jsonify({'error': 'Menu item not found'}), 404

    # New reviews wait for staff approval before they are public.
    review = Review(
        user_id=current_user.id,
        order_id=order_id,
        menu_item_id=menu_item_id,
        rating=rating,
        comment=comment,
    )
    db.session.add(review)
    try:
        db.session.commit()
    except SQLAlchemyError:
        return store_error_response('save the review')

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='REVIEW_CREATE',
        target_type='REVIEW',
        target_id=review.id,
        payload={
            'order_id': order_id,
            'menu_item_id': menu_item_id,
            'rating': rating,
        },
    )

    return jsonify({
        'ok': True,
        'review': serialize_review(review, include_user=False),
    }), 201
