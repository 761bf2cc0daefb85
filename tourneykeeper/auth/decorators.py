"""Decorators for the auth blueprint."""

import inspect
from functools import wraps

from flask import g

from tourneykeeper.errors import AuthenticationRequiredError, ForbiddenError
from tourneykeeper.permissions import is_global_admin


def _check_access(admin_required, allow_guest):
    user = g.get("user")
    if user is None:
        raise AuthenticationRequiredError()
    if not allow_guest and user.is_guest:
        raise ForbiddenError("Please create an account to do that.")
    if admin_required and not is_global_admin(user.global_role):
        raise ForbiddenError("You are not authorized to view this page.")


def login_required(f=None, admin_required=False, allow_guest=True):
    """Reject the request unless an identity is loaded for it.

    Usage:
    @login_required
    def protected_view():
        ...

    @login_required(allow_guest=False)
    def members_only_view():
        ...
    """

    def decorator(func):
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def decorated_coroutine(*args, **kwargs):
                _check_access(admin_required, allow_guest)
                return await func(*args, **kwargs)

            return decorated_coroutine

        @wraps(func)
        def decorated_function(*args, **kwargs):
            _check_access(admin_required, allow_guest)
            return func(*args, **kwargs)

        return decorated_function

    if f:
        return decorator(f)
    return decorator
