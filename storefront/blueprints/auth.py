from flask import Blueprint, jsonify
from flask_login import login_user, logout_user, current_user
from storefront.extensions import db
from storefront.models import User, UserRole, utcnow
from storefront.serializers import user_payload
from storefront.services.audit_service import actor_fields, log_audit
from storefront.utils import get_json_body
import logging
import re

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__)

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MIN_PASSWORD_LENGTH = 8
PROFILE_FIELDS = ('first_name', 'last_name', 'phone_number', 'city')


@bp.route('/api/auth/login', methods=['POST'])
def login():
    data = get_json_body()
    email = str(data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        return jsonify({'error': 'Email and password cannot be empty'}), 400

    user = User.query.filter_by(email=email).first()

    if user and user.check_password(password) and user.is_active:
        login_user(user, remember=True)
        user.last_login_at = utcnow()
        db.session.commit()

        log_audit(
            actor_id=user.id,
            actor_role=user.role.value.upper(),
            action='LOGIN_SUCCESS',
            target_type='USER',
            target_id=user.id,
            payload={'event': 'login_success'}
        )
        return jsonify({
            'ok': True,
            'role': user.role.value,
            'user_id': user.id,
            'user': user_payload(user),
        })

    reason = 'user_not_found'
    if user and not user.is_active:
        reason = 'account_disabled'
    elif user:
        reason = 'invalid_credentials'
    log_audit(
        actor_id=None,
        actor_role='ANONYMOUS',
        action='LOGIN_FAILED',
        target_type='USER',
        target_id=user.id if user else None,
        payload={'reason': reason})

    if reason == 'account_disabled':
        return jsonify({'error': 'This account has been disabled'}), 403
    return jsonify({'error': 'Invalid email or password'}), 401


@bp.route('/api/auth/register', methods=['POST'])
def register():
    data = get_json_body()
    email = str(data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    username = str(data.get('username') or '').strip() or None

    if not email or not password:
        return jsonify({'error': 'Email and password cannot be empty'}), 400
    if not EMAIL_RE.match(email):
        return jsonify({'error': 'Invalid email address'}), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({
            'error': f'Password must be at least {MIN_PASSWORD_LENGTH} '
                     f'characters'
        }), 400

    # Check if email already exists
    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'Email already registered'}), 409
    if username and User.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already taken'}), 409

    # Self-registration always creates customers
    user = User(email=email, username=username, role=UserRole.CUSTOMER)
    for field in PROFILE_FIELDS:
        value = data.get(field)
        if value:
            setattr(user, field, str(value).strip())
    user.set_password(password)
    db.session.add(user)
    db.session.flush()  # Get user.id

    # Auto username for new users (unique & human-friendly)
    if not user.username:
        user.username = f"user{user.id}"

    db.session.commit()

    log_audit(
        actor_id=user.id,
        actor_role=user.role.value.upper(),
        action='REGISTER',
        target_type='USER',
        target_id=user.id,
        payload={'email': user.email}
    )

    # Auto login
    login_user(user, remember=True)
    return jsonify({'ok': True, 'user_id': user.id,
                    'user': user_payload(user)}), 201


@bp.route('/api/auth/logout', methods=['POST'])
def logout():
    if current_user.is_authenticated:
        actor_id, actor_role = actor_fields(current_user)
        logout_user()
        log_audit(
            actor_id=actor_id,
            actor_role=actor_role,
            action='LOGOUT',
            target_type='USER',
            target_id=actor_id,
        )
    return jsonify({'ok': True})


@bp.route('/api/auth/current', methods=['GET'])
def current():
    if not current_user.is_authenticated:
        return jsonify({'authenticated': False, 'user': None})
    return jsonify({
        'authenticated': True,
        'user': user_payload(current_user),
    })
