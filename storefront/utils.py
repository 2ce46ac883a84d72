from functools import wraps
from flask import current_app, jsonify, request, session
from flask_login import current_user
from sqlalchemy import update
from storefront.extensions import db
from storefront.errors import ValidationError
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

GUEST_ORDERS_SESSION_KEY = 'guest_order_ids'


def money(value):
    """Render a Numeric column for JSON."""
    if value is None:
        return None
    return float(value)


def iso(value):
    return value.isoformat() if value is not None else None


def get_json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def parse_bool(value, default=None):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def guarded_update(model, criteria, values):
    """Run ``UPDATE model SET values WHERE criteria`` and report success.

    Used for counters that concurrent requests race on (stock, usage caps,
    balances): the guard lives in the WHERE clause, so a losing request
    updates zero rows instead of overdrawing the counter.
    """
    result = db.session.execute(
        update(model)
        .where(*criteria)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    updated = result.rowcount == 1
    if updated:
        # Loaded instances reload the new values on next access
        for obj in list(db.session.identity_map.values()):
            if isinstance(obj, model):
                db.session.expire(obj, list(values.keys()))
    return updated


def remember_guest_order(order_id):
    ids = list(session.get(GUEST_ORDERS_SESSION_KEY, []))
    if order_id not in ids:
        ids.append(order_id)
        # Keep the cookie small.
        session[GUEST_ORDERS_SESSION_KEY] = ids[-20:]


def can_view_order(order):
    if current_user.is_authenticated:
        if order.user_id is not None and order.user_id == current_user.id:
            return True
        if current_user.is_staff:
            return True
    return order.id in session.get(GUEST_ORDERS_SESSION_KEY, [])


def owner_or_permission_required(permission, id_param='user_id'):
    """Allow the user named by ``id_param`` or holders of ``permission``."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            target_id = kwargs.get(id_param)
            if not current_user.is_authenticated:
                return jsonify({'error': 'Not logged in'}), 401
            if (target_id != current_user.id
                    and not current_user.has_permission(permission)):
                logger.warning(
                    "User %s attempted to access resources of user %s",
                    current_user.id,
                    target_id,
                )
                return jsonify({
                    'error': 'No permission to access this resource'
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def pagination_args():
    page = max(1, request.args.get('page', 1, type=int))
    per_page = request.args.get(
        'per_page',
        current_app.config['ITEMS_PER_PAGE'],
        type=int)
    per_page = max(1, min(per_page, current_app.config['MAX_ITEMS_PER_PAGE']))
    return page, per_page


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


def parse_datetime(value, field):
    """ISO 8601 string to naive UTC; empty values give None."""
    if value in (None, ''):
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'Invalid {field}')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
