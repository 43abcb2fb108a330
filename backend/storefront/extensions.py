# Overview: Flask extension instances (database, migrations) and the per-app payment gateway slot.

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

PAYMENT_GATEWAY_KEY = "payment_gateway"


def init_payment_gateway(app, gateway=None) -> None:
    """Attach a payment gateway to the app (HTTP gateway built from config when omitted)."""
    if gateway is None:
        from .services.payment_gateway import HttpPaymentGateway

        gateway = HttpPaymentGateway(
            base_url=app.config["PAYMENT_GATEWAY_URL"],
            api_key=app.config["PAYMENT_GATEWAY_API_KEY"],
            timeout=app.config["PAYMENT_GATEWAY_TIMEOUT"],
        )
    app.extensions[PAYMENT_GATEWAY_KEY] = gateway


def get_payment_gateway():
    return current_app.extensions[PAYMENT_GATEWAY_KEY]
