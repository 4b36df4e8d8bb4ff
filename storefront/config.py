import os
from datetime import timedelta


def _env_bool(name, default=False):
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False
    ENV = os.getenv("FLASK_ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-change-me")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(days=1)

    # Orders
    ORDER_NUMBER_PREFIX = os.getenv("ORDER_NUMBER_PREFIX", "ORD")
    CURRENCY = os.getenv("CURRENCY", "KES")
    SHIPPING_FLAT_FEE = os.getenv("SHIPPING_FLAT_FEE", "0")
    FREE_SHIPPING_THRESHOLD = os.getenv("FREE_SHIPPING_THRESHOLD")  # None = never free

    # Payments
    PAYMENT_PROVIDER = os.getenv("PAYMENT_PROVIDER", "daraja")
    PAYMENT_ENV = os.getenv("PAYMENT_ENV", "sandbox")  # "sandbox" | "production"
    PAYMENT_CONSUMER_KEY = os.getenv("PAYMENT_CONSUMER_KEY")
    PAYMENT_CONSUMER_SECRET = os.getenv("PAYMENT_CONSUMER_SECRET")
    PAYMENT_SHORTCODE = os.getenv("PAYMENT_SHORTCODE")
    PAYMENT_PASSKEY = os.getenv("PAYMENT_PASSKEY")
    PAYMENT_CALLBACK_URL = os.getenv("PAYMENT_CALLBACK_URL")
    PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET")
    PAYMENT_HTTP_TIMEOUT = float(os.getenv("PAYMENT_HTTP_TIMEOUT", "15"))
    PAYMENT_PENDING_EXPIRY_MINUTES = int(os.getenv("PAYMENT_PENDING_EXPIRY_MINUTES", "60"))
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:5000")

    SQLALCHEMY_ECHO = _env_bool("SQLALCHEMY_ECHO")

    @staticmethod
    def init_app(app):
        if not os.getenv("DATABASE_URL"):
            os.makedirs(app.instance_path, exist_ok=True)
            app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{os.path.join(app.instance_path, 'app.db')}"
        else:
            app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL")
