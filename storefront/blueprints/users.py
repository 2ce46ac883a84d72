from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from sqlalchemy import or_
from storefront.extensions import db
from storefront.models import Permission, User, UserRole
from storefront.middleware import permission_required
from storefront.serializers import user_payload
from storefront.services.audit_service import actor_fields, log_audit
from storefront.utils import (
    get_json_body,
    owner_or_permission_required,
    paginate_query,
    pagination_args,
    parse_bool,
)
from storefront.blueprints.auth import MIN_PASSWORD_LENGTH, PROFILE_FIELDS
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('users', __name__)


def _get_user_or_404(user_id):
    return db.session.get(User, user_id)


@bp.route('/api/users', methods=['GET'])
@login_required
@permission_required(Permission.MANAGE_USERS)
def list_users():
    page, per_page = pagination_args()
    query = User.query

    role = (request.args.get('role') or '').strip()
    if role:
        try:
            query = query.filter(User.role == UserRole[role.upper()])
        except KeyError:
            return jsonify({'error': f'Invalid role: {role}'}), 400

    active = parse_bool(request.args.get('active'))
    if active is not None:
        query = query.filter(User.is_active.is_(active))

    keyword = (request.args.get('q') or '').strip()
    if keyword:
        pattern = f'%{keyword}%'
        query = query.filter(or_(
            User.email.ilike(pattern),
            User.username.ilike(pattern),
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
        ))

    result = paginate_query(
        query.order_by(User.created_at.desc()), page, per_page)
    result['items'] = [user_payload(u) for u in result['items']]
    return jsonify(result)


@bp.route('/api/users/<int:user_id>', methods=['GET'])
@login_required
@owner_or_permission_required(Permission.MANAGE_USERS)
def get_user(user_id):
    user = _get_user_or_404(user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404
    return jsonify(user_payload(user))


@bp.route('/api/users/<int:user_id>', methods=['PUT', 'PATCH'])
@login_required
@owner_or_permission_required(Permission.MANAGE_USERS)
def update_user(user_id):
    user = _get_user_or_404(user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404

    data = get_json_body()
    is_admin = current_user.has_permission(Permission.MANAGE_USERS)
    if 'role' in data or 'is_active' in data:
        if not is_admin:
            return jsonify({'error': 'Insufficient permissions'}), 403
        if user.id == current_user.id:
            return jsonify({
                'error': 'You cannot change your own role or status'
            }), 400

    role = None
    if 'role' in data:
        try:
            role = UserRole[str(data['role']).upper()]
        except KeyError:
            return jsonify({'error': f"Invalid role: {data['role']}"}), 400

    username = None
    if 'username' in data:
        username = str(data.get('username') or '').strip()
        if not username:
            return jsonify({'error': 'username cannot be empty'}), 400
        taken = User.query.filter(
            User.username == username, User.id != user.id).first()
        if taken:
            return jsonify({'error': 'Username already taken'}), 409

    changes = {}
    for field in PROFILE_FIELDS:
        if field in data:
            value = data[field]
            value = str(value).strip() if value is not None else None
            setattr(user, field, value or None)
            changes[field] = value
    if username:
        user.username = username
        changes['username'] = username
    if role is not None:
        user.role = role
        changes['role'] = role.value
    if 'is_active' in data:
        user.is_active = bool(parse_bool(data['is_active'], default=True))
        changes['is_active'] = user.is_active

    db.session.commit()

    actor_id, actor_role = actor_fields(current_user)
    log_audit(
        actor_id=actor_id,
        actor_role=actor_role,
        action='USER_UPDATE',
        target_type='USER',
        target_id=user.id,
        payload=changes
    )
    return jsonify(user_payload(user))


@bp.route('/api/users/<int:user_id>', methods=['DELETE'])
@login_required
@permission_required(Permission.MANAGE_USERS)
def delete_user(user_id):
    """Disable the account; orders and ledger rows keep their owner."""
    user = _get_user_or_404(user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404
    if user.id == current_user.id:
        return jsonify({'error': 'You cannot delete your own account'}), 400

    user.is_active = False
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value.upper(),
        action='USER_DISABLE',
        target_type='USER',
        target_id=user.id,
    )
    return jsonify({'ok': True, 'id': user.id, 'is_active': False})


@bp.route('/api/users/<int:user_id>/change-password', methods=['POST'])
@login_required
@owner_or_permission_required(Permission.MANAGE_USERS)
def change_password(user_id):
    user = _get_user_or_404(user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404

    data = get_json_body()
    new_password = data.get('new_password') or ''
    if len(new_password) < MIN_PASSWORD_LENGTH:
        return jsonify({
            'error': f'Password must be at least {MIN_PASSWORD_LENGTH} '
                     f'characters'
        }), 400

    # Users changing their own password must prove they know the old one
    if user.id == current_user.id:
        if not user.check_password(data.get('current_password') or ''):
            return jsonify({'error': 'Current password is incorrect'}), 400

    user.set_password(new_password)
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value.upper(),
        action='USER_CHANGE_PASSWORD',
        target_type='USER',
        target_id=user.id,
    )
    return jsonify({'ok': True})
