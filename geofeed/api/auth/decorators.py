# geofeed/api/auth/decorators.py
from functools import wraps

from flask import current_app

from geofeed.core.errors import NotAuthenticatedError


def login_required(view):
    """세션이 열려 있지 않으면 401을 반환합니다."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not current_app.services['session'].is_authenticated:
            raise NotAuthenticatedError()
        return view(*args, **kwargs)
    return wrapper


def get_current_user_id() -> str:
    uid = current_app.services['session'].uid
    if uid is None:
        raise NotAuthenticatedError()
    return uid
