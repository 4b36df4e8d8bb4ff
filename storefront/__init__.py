# --- storefront/__init__.py ---
import logging

from flask import Flask

from .config import Config
from .extensions import db, jwt, cors, migrate, use_immediate_transactions
from .utils.api import ok


def create_app(config_overrides=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    Config.init_app(app)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))
    logging.getLogger("storefront").setLevel(app.logger.level)

    # Init extensions
    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(app, resources={r"/*": {"origins": "*"}})
    migrate.init_app(app, db)

    from .gateway import init_payment
    init_payment(app)

    # Register blueprints
    from .cart import bp as cart_bp; app.register_blueprint(cart_bp)
    from .order import bp as order_bp; app.register_blueprint(order_bp)
    from .payment import bp as payment_bp; app.register_blueprint(payment_bp)

    from .cli import register_cli
    register_cli(app)

    @app.get("/")
    def health():
        return ok("API running", {"ok": True})

    with app.app_context():
        use_immediate_transactions(db.engine)
        from . import model  # noqa: F401  (register tables)
        db.create_all()

    return app
