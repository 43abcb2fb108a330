# backend/storefront/routes/payments.py
"""
Checkout routes.

POST /intent   open a gateway payment intent for cart subtotal + shipping
POST /confirm  turn a succeeded intent into an order (201), or return the
               existing order for an already-used intent (200)
GET  /history  the caller's orders
"""
from flask import Blueprint, request, g, current_app

from ..errors import StorefrontError
from ..services import payment_service
from ..decorators import require_auth

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/intent")
@require_auth
def create_intent_route():
    try:
        return payment_service.create_intent(g.current_user), 200
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create payment intent")
        return {"error": "Payment processing error"}, 500


@payments_bp.post("/confirm")
@require_auth
def confirm_payment_route():
    """Body: {"payment_intent_id": str, "shipping_address": {...}}"""
    data = request.get_json(silent=True) or {}

    try:
        order, created = payment_service.confirm_payment(
            g.current_user,
            data.get("payment_intent_id"),
            data.get("shipping_address"),
        )
    except StorefrontError as e:
        return e.to_dict(), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return {"error": "Failed to process payment confirmation"}, 500

    if created:
        return {"order": order.to_dict(), "message": "Payment successful and order created"}, 201
    return {"order": order.to_dict(), "message": "Payment already processed"}, 200


@payments_bp.get("/history")
@require_auth
def payment_history_route():
    return payment_service.payment_history(
        g.current_user.id,
        page=request.args.get("page", type=int),
        limit=request.args.get("limit", type=int),
    )
