from flask import current_app, g, jsonify, request, session
from flask_wtf.csrf import generate_csrf

from tourneykeeper.errors import ValidationError
from tourneykeeper.storage import (
    GuestIdentityCache,
    RecoveryIntent,
    local_store,
    tab_store,
)
from tourneykeeper.user.services import UserService
from tourneykeeper.utils import form_error_message

from . import bp
from .decorators import login_required
from .dispatcher import AuthFlowDispatcher, FlowState
from .forms import CallbackForm, ConfirmForm, GuestForm
from .params import Location, resolve_params
from .provider import get_identity_provider
from .utils import AuthErrorKind

ERROR_STATUS = {
    AuthErrorKind.EXPIRED: 410,
    AuthErrorKind.ALREADY_CONSUMED: 409,
    AuthErrorKind.TIMEOUT: 504,
    AuthErrorKind.SESSION_CREATE_FAILED: 502,
}


def _guest_cache():
    return GuestIdentityCache(local_store(), ttl=current_app.config["GUEST_CACHE_TTL"])


def _recovery_intent():
    return RecoveryIntent(tab_store(), ttl=current_app.config["RECOVERY_INTENT_TTL"])


def _build_dispatcher():
    config = current_app.config
    return AuthFlowDispatcher(
        get_identity_provider(),
        recovery=_recovery_intent(),
        guest_cache=_guest_cache(),
        max_retries=config["AUTH_MAX_RETRIES"],
        retry_delay=config["AUTH_RETRY_DELAY"],
        flow_timeout=config["AUTH_FLOW_TIMEOUT"],
        set_session_timeout=config["AUTH_SET_SESSION_TIMEOUT"],
        verify_timeout=config["AUTH_VERIFY_TIMEOUT"],
    )


def _respond(outcome):
    """Persist the identity behind a new session and render the outcome."""
    body = outcome.to_dict()
    if outcome.session is not None:
        user = dict(outcome.session.user or {})
        if not user.get("id"):
            user["id"] = outcome.session.identity_id
        identity = UserService.sync_provider_identity(user)
        body["identity"] = identity.to_dict()
    if outcome.state == FlowState.REDIRECTING:
        return jsonify(body), 200
    if outcome.state == FlowState.TIMED_OUT:
        return jsonify(body), 504
    return jsonify(body), ERROR_STATUS.get(outcome.error_kind, 400)


@bp.route("/callback", methods=["GET", "POST"])
async def callback():
    """Complete an auth redirect.

    GET reads the real query string. POST carries what only the browser can
    see: the full href, or the hash and search parts separately.
    """
    if request.method == "GET":
        location = Location.from_parts(search=request.query_string.decode("utf-8"))
    else:
        form = CallbackForm()
        if not form.validate_on_submit():
            raise ValidationError(form_error_message(form))
        if form.href.data:
            location = Location.from_href(form.href.data)
        else:
            location = Location.from_parts(form.hash.data, form.search.data)

    params = resolve_params(location)
    dispatcher = _build_dispatcher()
    outcome = await dispatcher.dispatch(params)
    current_app.logger.info(
        f"Auth callback finished in {outcome.state.value} "
        f"via {' > '.join(s.value for s in dispatcher.history)}"
    )
    return _respond(outcome)


@bp.route("/confirm", methods=["POST"])
async def confirm():
    """Verify an email link (signup, magic link, recovery, invite)."""
    form = ConfirmForm()
    if not form.validate_on_submit():
        raise ValidationError(form_error_message(form))
    dispatcher = _build_dispatcher()
    outcome = await dispatcher.confirm(
        form.token_hash.data, form.type.data, form.redirect_to.data
    )
    return _respond(outcome)


@bp.route("/recovery-intent", methods=["POST"])
def recovery_intent():
    """Remember that this tab started a password recovery."""
    _recovery_intent().mark()
    return jsonify({"status": "success"})


@bp.route("/guest", methods=["POST"])
def start_guest():
    """Return the current identity, creating an anonymous one if needed."""
    if g.user is not None:
        return jsonify({"identity": g.user.to_dict(), "created": False})

    form = GuestForm()
    if not form.validate_on_submit():
        raise ValidationError(form_error_message(form))
    identity = UserService.create_anonymous_identity(form.display_name.data)
    _guest_cache().set(identity.to_dict())
    return jsonify({"identity": identity.to_dict(), "created": True}), 201


@bp.route("/session", methods=["GET"])
def current_session():
    """Report who the current request is acting as."""
    user = g.user
    return jsonify(
        {
            "authenticated": bool(g.get("authenticated")),
            "is_guest": bool(user is not None and user.is_guest),
            "identity": user.to_dict() if user is not None else None,
            "csrf_token": generate_csrf(),
        }
    )


@bp.route("/logout", methods=["POST"])
@login_required
async def logout():
    """Sign out at the provider and forget every local identity."""
    provider = get_identity_provider(required=False)
    if provider is not None:
        response = await provider.sign_out()
        if response.error:
            current_app.logger.warning(
                f"Provider sign-out failed: {response.error.message}"
            )
    _guest_cache().clear()
    tab_store().clear()
    session.clear()
    return jsonify({"status": "success"})
