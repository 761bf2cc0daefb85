"""Initialize the Flask app and its extensions."""

import os

from flask import Flask, current_app, g
from werkzeug.middleware.proxy_fix import ProxyFix

from . import constants
from .extensions import csrf, db
from .utils import parse_bool


def create_app(test_config=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration
    app.config.from_mapping(
        SECRET_KEY=os.environ.get("SECRET_KEY") or "dev",
        SQLALCHEMY_DATABASE_URI=os.environ.get("DATABASE_URL")
        or "sqlite:///" + os.path.join(app.instance_path, "tourneykeeper.sqlite"),
        AUTH_PROVIDER_URL=os.environ.get("AUTH_PROVIDER_URL"),
        AUTH_PROVIDER_API_KEY=os.environ.get("AUTH_PROVIDER_API_KEY"),
        APP_BASE_URL=os.environ.get("APP_BASE_URL") or "http://localhost:5000",
        GUEST_LIMIT_ENABLED=parse_bool(os.environ.get("GUEST_LIMIT_ENABLED"), True),
        MERGE_ACCOUNTS_ENABLED=parse_bool(
            os.environ.get("MERGE_ACCOUNTS_ENABLED"), True
        ),
        RECOVERY_INTENT_TTL=int(
            os.environ.get("RECOVERY_INTENT_TTL") or constants.RECOVERY_INTENT_TTL
        ),
        GUEST_CACHE_TTL=int(
            os.environ.get("GUEST_CACHE_TTL") or constants.GUEST_CACHE_TTL
        ),
        MERGE_BATCH_SIZE=constants.MERGE_BATCH_SIZE,
        AUTH_MAX_RETRIES=constants.MAX_AUTH_RETRIES,
        AUTH_RETRY_DELAY=constants.AUTH_RETRY_DELAY,
        AUTH_FLOW_TIMEOUT=constants.AUTH_FLOW_TIMEOUT,
        AUTH_SET_SESSION_TIMEOUT=constants.SET_SESSION_TIMEOUT,
        AUTH_VERIFY_TIMEOUT=constants.VERIFY_SESSION_TIMEOUT,
        # A prebuilt IdentityProviderClient; tests inject a fake here.
        IDENTITY_PROVIDER=None,
    )

    if test_config:
        app.config.update(test_config)

    # Ensure the instance folder exists
    os.makedirs(app.instance_path, exist_ok=True)

    # Initialize extensions
    db.init_app(app)
    csrf.init_app(app)

    with app.app_context():
        from . import models  # noqa: F401

        db.create_all()

    # Register blueprints
    from . import auth as auth_bp

    app.register_blueprint(auth_bp.bp)

    from . import tournament as tournament_bp

    app.register_blueprint(tournament_bp.bp)

    from . import membership as membership_bp

    app.register_blueprint(membership_bp.bp)

    from . import guest as guest_bp

    app.register_blueprint(guest_bp.bp)

    from . import merge as merge_bp

    app.register_blueprint(merge_bp.bp)

    from . import error_handlers

    app.register_blueprint(error_handlers.error_handlers_bp)

    @app.before_request
    def load_current_identity():
        """Resolve the identity for this request from the provider session.

        An absent or expired session means unauthenticated even if an identity
        is cached; a cached guest identity may still act as a guest.
        """
        from .auth.provider import get_identity_provider
        from .storage import GuestIdentityCache, local_store
        from .user.services import UserService

        g.user = None
        g.authenticated = False

        provider = get_identity_provider(required=False)
        provider_session = provider.current_session() if provider else None
        if provider_session is not None:
            identity = UserService.get_identity(provider_session.identity_id)
            if identity is None and provider_session.user:
                identity = UserService.sync_provider_identity(provider_session.user)
            g.user = identity
            g.authenticated = identity is not None
            return

        cache = GuestIdentityCache(
            local_store(), ttl=current_app.config["GUEST_CACHE_TTL"]
        )
        cached = cache.get()
        if not cached:
            return
        identity = UserService.get_identity(cached.get("id"))
        if identity is not None and identity.is_anonymous:
            g.user = identity
        else:
            current_app.logger.info("Dropping cached guest identity that no longer exists")
            cache.clear()

    @app.after_request
    def persist_tab_store(response):
        from .storage import save_tab_cookie

        return save_tab_cookie(response)

    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    return app
