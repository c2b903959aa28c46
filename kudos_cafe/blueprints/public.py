from flask import Blueprint, render_template, jsonify, request
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError
from kudos_cafe.models import GalleryImage, MenuItem, Review
from kudos_cafe.services import order_message_service as messaging
from kudos_cafe.services.audit_service import log_audit
from kudos_cafe.services.storage_service import public_url
from kudos_cafe.utils import (
    get_menu_rating_summary,
    request_data,
    store_error_response,
    wants_json_response,
)

bp = Blueprint('public', __name__)

CATEGORY_ICONS = {
    'coffee': 'bi-cup-hot',
    'tea': 'bi-cup',
    'pastries': 'bi-basket',
    'breakfast': 'bi-egg-fried',
    'mains': 'bi-egg',
    'desserts': 'bi-cake',
    'drinks': 'bi-cup-straw',
}


def _category_icon(category: str) -> str:
    return CATEGORY_ICONS.get((category or '').lower(), 'bi-tag')


def serialize_menu_item(item, rating_summary=None):
    rating = (rating_summary or {}).get(item.id)
    return {
        'id': item.id,
        'name': item.name,
        'description': item.description,
        'category': item.category,
        'price': float(item.price),
        'image_url': public_url(item.image_path),
        'dietary_tags': item.tags,
        'is_available': item.is_available,
        'is_popular': item.is_popular,
        'is_new': item.is_new,
        'rating': rating,
    }


def _available_menu(category=None):
    query = MenuItem.query.filter_by(is_available=True)
    if category and category != 'all':
        query = query.filter(MenuItem.category == category)
    return query.order_by(MenuItem.category.asc(), MenuItem.name.asc()).all()


@bp.route('/')
def index():
    popular = MenuItem.query.filter_by(
        is_available=True,
        is_popular=True,
    ).order_by(MenuItem.name.asc()).limit(6).all()
    featured_reviews = Review.query.filter_by(
        is_approved=True,
        is_featured=True,
    ).order_by(Review.created_at.desc()).limit(3).all()

    if wants_json_response():
        summary = get_menu_rating_summary([m.id for m in popular])
        return jsonify({
            'popular_items': [
                serialize_menu_item(m, summary) for m in popular],
            'featured_reviews': [{
                'id': r.id,
                'rating': r.rating,
                'comment': r.comment,
            } for r in featured_reviews],
        })

    return render_template(
        'public/index.html',
        popular=popular,
        featured_reviews=featured_reviews,
        user=current_user,
    )


@bp.route('/menu', methods=['GET'])
def menu_page():
    items = _available_menu(request.args.get('category'))
    categories = sorted({i.category for i in items})
    return render_template(
        'public/menu.html',
        items=items,
        categories=categories,
        category_icons={c: _category_icon(c) for c in categories},
        rating_summary=get_menu_rating_summary([i.id for i in items]),
    )


@bp.route('/api/public/menu', methods=['GET'])
def menu_api():
    items = _available_menu(request.args.get('category'))
    summary = get_menu_rating_summary([i.id for i in items])
    return jsonify({
        'items': [serialize_menu_item(i, summary) for i in items],
        'categories': sorted({i.category for i in items}),
    })


def _active_gallery():
    return GalleryImage.query.filter_by(is_active=True).order_by(
        GalleryImage.created_at.desc()).all()


@bp.route('/gallery', methods=['GET'])
def gallery_page():
    return render_template('public/gallery.html', images=_active_gallery())


@bp.route('/api/public/gallery', methods=['GET'])
def gallery_api():
    return jsonify({
        'items': [{
            'id': g.id,
            'title': g.title,
            'image_url': public_url(g.image_path),
        } for g in _active_gallery()]
    })


@bp.route('/contact', methods=['GET'])
def contact_page():
    return render_template('public/contact.html')


@bp.route('/api/public/contact', methods=['POST'])
def contact():
    data = request_data()
    sender_id = (
        current_user.id if current_user.is_authenticated else None
    )
    try:
        msg = messaging.create_contact_inquiry(
            name=data.get('name'),
            email=data.get('email'),
            subject=data.get('subject'),
            text=data.get('message'),
            sender_id=sender_id,
        )
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        return store_error_response('send your message')

    log_audit(
        actor_id=sender_id,
        actor_role=(
            current_user.role.value if sender_id else 'ANONYMOUS'
        ),
        action='CONTACT_INQUIRY',
        target_type='ORDER_MESSAGE',
        target_id=msg.id,
        payload={'subject': msg.subject},
    )

    return jsonify({'ok': True, 'message_id': msg.id}), 201
