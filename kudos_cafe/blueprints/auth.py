from flask import (
    Blueprint,
    request,
    jsonify,
    render_template,
    redirect,
    url_for,
    flash,
)
from flask_login import (
    login_user,
    logout_user,
    login_required,
    current_user,
)
from sqlalchemy.exc import SQLAlchemyError
from kudos_cafe.extensions import db
from kudos_cafe.models import User, UserRole
from kudos_cafe.services.audit_service import log_audit
from kudos_cafe.utils import request_data
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__)

MIN_PASSWORD_LENGTH = 6


def _landing_for(user):
    if user.is_admin:
        return url_for('admin.dashboard')
    return url_for('public.index')


@bp.route('/api/auth/login', methods=['POST'])
@bp.route('/login', methods=['GET', 'POST'])
def login():
    if request.method == 'GET':
        if current_user.is_authenticated:
            return redirect(_landing_for(current_user))
        return render_template('auth/login.html')

    data = request_data()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        if request.is_json:
            return jsonify(
                {'error': 'Email and password cannot be empty'}), 400
        flash('Email and password cannot be empty', 'error')
        return redirect(url_for('auth.login'))

    user = User.query.filter_by(email=email).first()

    if user and user.check_password(password) and user.is_active:
        login_user(user, remember=True)
        user.last_login_at = datetime.utcnow()
        db.session.commit()

        log_audit(
            actor_id=user.id,
            actor_role=user.role.value,
            action='LOGIN_SUCCESS',
            target_type='USER',
            target_id=user.id,
            payload={'event': 'login_success'}
        )

        if request.is_json:
            return jsonify(
                {'ok': True, 'role': user.role.value, 'user_id': user.id})
        return redirect(_landing_for(user))

    log_audit(
        actor_id=None,
        actor_role='ANONYMOUS',
        action='LOGIN_FAILED',
        target_type='USER',
        target_id=None,
        payload={
            'reason': 'invalid_credentials' if user else 'user_not_found'})

    if request.is_json:
        return jsonify({'error': 'Invalid email or password'}), 401
    flash('Invalid email or password', 'error')
    return redirect(url_for('auth.login'))


@bp.route('/api/auth/register', methods=['POST'])
@bp.route('/register', methods=['GET', 'POST'])
def register():
    if request.method == 'GET':
        if current_user.is_authenticated:
            return redirect(url_for('public.index'))
        return render_template('auth/register.html')

    data = request_data()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    full_name = (data.get('full_name') or '').strip()
    phone = (data.get('phone') or '').strip() or None

    error = None
    if not email or not password:
        error = 'Email and password cannot be empty'
    elif '@' not in email:
        error = 'Please provide a valid email address'
    elif len(password) < MIN_PASSWORD_LENGTH:
        error = (
            f'Password must be at least {MIN_PASSWORD_LENGTH} characters')
    elif User.query.filter_by(email=email).first():
        error = 'Email already registered'

    if error:
        if request.is_json:
            return jsonify({'error': error}), 400
        flash(error, 'error')
        return redirect(url_for('auth.register'))

    # Self-registration always creates a customer account.
    user = User(
        email=email,
        full_name=full_name,
        phone=phone,
        role=UserRole.CUSTOMER)
    user.set_password(password)
    db.session.add(user)
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.error("Failed to register %s", email, exc_info=True)
        if request.is_json:
            return jsonify({'error': 'Registration failed'}), 500
        flash('Registration failed, please try again', 'error')
        return redirect(url_for('auth.register'))

    log_audit(
        actor_id=user.id,
        actor_role=user.role.value,
        action='REGISTER',
        target_type='USER',
        target_id=user.id,
        payload={'has_phone': phone is not None}
    )

    login_user(user, remember=True)

    if request.is_json:
        return jsonify(
            {'ok': True, 'role': user.role.value, 'user_id': user.id}), 201
    flash('Registration successful!', 'success')
    return redirect(url_for('public.index'))


@bp.route('/api/auth/me', methods=['GET'])
@login_required
def me():
    return jsonify({
        'id': current_user.id,
        'email': current_user.email,
        'full_name': current_user.full_name,
        'phone': current_user.phone,
        'role': current_user.role.value,
    })


@bp.route('/logout', methods=['POST'])
@login_required
def logout():
    user_id = current_user.id
    role = current_user.role.value

    log_audit(
        actor_id=user_id,
        actor_role=role,
        action='LOGOUT',
        target_type='USER',
        target_id=user_id
    )

    logout_user()
    if request.is_json:
        return jsonify({'ok': True})
    return redirect(url_for('public.index'))
