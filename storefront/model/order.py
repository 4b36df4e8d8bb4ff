from datetime import datetime
from ..extensions import db
from ..utils.money import money_json
from .types import GUID, new_uuid

# ---- status state machine ---------------------------------------------------
PENDING = "pending"
PAYMENT_PENDING = "payment_pending"
CONFIRMED = "confirmed"
PROCESSING = "processing"
SHIPPED = "shipped"
DELIVERED = "delivered"
CANCELLED = "cancelled"
REFUNDED = "refunded"

STATUSES = (PENDING, PAYMENT_PENDING, CONFIRMED, PROCESSING, SHIPPED, DELIVERED, CANCELLED, REFUNDED)
TERMINAL = frozenset({DELIVERED, CANCELLED, REFUNDED})

# states that mean the money has been received
PAID = frozenset({CONFIRMED, PROCESSING, SHIPPED, DELIVERED})

TRANSITIONS = {
    PENDING: {PAYMENT_PENDING, CANCELLED},
    PAYMENT_PENDING: {CONFIRMED, CANCELLED},
    CONFIRMED: {PROCESSING, SHIPPED, CANCELLED, REFUNDED},
    PROCESSING: {SHIPPED, CANCELLED, REFUNDED},
    SHIPPED: {DELIVERED, CANCELLED, REFUNDED},
    DELIVERED: set(),
    CANCELLED: set(),
    REFUNDED: set(),
}


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(GUID(), primary_key=True, default=new_uuid)
    order_number = db.Column(db.String(32), unique=True, nullable=False, index=True)  # e.g. "ORD-20251022-K3F9QZ"
    user_id = db.Column(db.String(64), nullable=True, index=True)
    guest_email = db.Column(db.String(255))
    status = db.Column(db.String(20), nullable=False, default=PENDING, index=True)

    # Money snapshot
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    shipping_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="KES")

    # Shipping snapshot
    shipping_name = db.Column(db.String(180))
    shipping_phone = db.Column(db.String(50))
    shipping_address = db.Column(db.String(255))
    shipping_city = db.Column(db.String(120))
    shipping_country = db.Column(db.String(120))
    notes = db.Column(db.Text)
    is_whatsapp_order = db.Column(db.Boolean, nullable=False, default=False)  # WhatsApp buy button

    # Payment
    payment_provider = db.Column(db.String(32))
    payment_ref = db.Column(db.String(128), index=True)
    paid_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id.asc()",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL

    def can_transition(self, target: str) -> bool:
        return target in TRANSITIONS.get(self.status, set())

    def as_api(self, with_items=True):
        data = {
            "id": str(self.id),
            "order_number": self.order_number,
            "status": self.status,
            "user_id": self.user_id,
            "guest_email": self.guest_email,
            "money": {
                "subtotal": money_json(self.subtotal),
                "shipping_cost": money_json(self.shipping_cost),
                "discount": money_json(self.discount),
                "total": money_json(self.total),
                "currency": self.currency,
            },
            "shipping": {
                "name": self.shipping_name,
                "phone": self.shipping_phone,
                "address": self.shipping_address,
                "city": self.shipping_city,
                "country": self.shipping_country,
            },
            "notes": self.notes,
            "is_whatsapp_order": bool(self.is_whatsapp_order),
            "payment": {
                "provider": self.payment_provider,
                "ref": self.payment_ref,
                "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            },
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if with_items:
            data["items"] = [i.as_api() for i in self.items]
        return data


class OrderItem(db.Model):
    """Immutable snapshot of a cart line at checkout time."""
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(GUID(), db.ForeignKey("orders.id"), nullable=False, index=True)

    # Link back for stock release (not a FK: catalog rows may be deleted later)
    variant_id = db.Column(db.Integer, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    variant_size = db.Column(db.String(32), nullable=False)
    variant_color = db.Column(db.String(64), nullable=False)
    sku = db.Column(db.String(64))

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)

    def as_api(self):
        return {
            "variant_id": self.variant_id,
            "product_name": self.product_name,
            "size": self.variant_size,
            "color": self.variant_color,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price": money_json(self.unit_price),
            "subtotal": money_json(self.subtotal),
        }
