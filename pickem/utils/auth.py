"""
Token authentication glue for the admin API

Sign-in itself is handled outside this service; requests carry an
``Authorization: Bearer <token>`` header issued by ``flask user create-admin``.
"""

from functools import wraps

from flask import abort
from flask_login import current_user, login_required

from pickem import db, login_manager


@login_manager.user_loader
def load_user(user_id):
    from pickem.models import User

    return db.session.get(User, int(user_id))


@login_manager.request_loader
def load_user_from_request(request):
    from pickem.models import User

    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return User.get_by_api_token(token.strip())


def admin_required(f):
    """Require an authenticated site admin"""

    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)

    return decorated_function
