# storefront/model/cart.py
from __future__ import annotations
import uuid as _uuid
from decimal import Decimal
from sqlalchemy.sql import func
from ..extensions import db
from ..utils.money import D, round_money, money_json


class Cart(db.Model):
    __tablename__ = "cart"

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, index=True, default=lambda: str(_uuid.uuid4()))
    user_id = db.Column(db.String(64), nullable=True, index=True)
    status = db.Column(db.String(16), default="active", index=True)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    items = db.relationship(
        "CartItem",
        backref="cart",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CartItem.id.asc()",
    )

    def subtotal_dec(self) -> Decimal:
        # estimate only: checkout re-prices from the variant rows
        return round_money(sum((i.line_total_dec() for i in self.items), Decimal("0")))

    def as_api(self):
        return {
            "id": self.uuid,
            "status": self.status,
            "items": [i.as_api() for i in self.items],
            "subtotal": money_json(self.subtotal_dec()),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class CartItem(db.Model):
    __tablename__ = "cart_item"

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("cart.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variant.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=1)
    price_snapshot = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    added_at = db.Column(db.DateTime, server_default=func.now())

    variant = db.relationship("ProductVariant", lazy="joined")

    def line_total_dec(self) -> Decimal:
        return round_money(D(self.price_snapshot) * Decimal(self.quantity or 0))

    def as_api(self):
        v = self.variant
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "name": v.product.name if v and v.product else None,
            "size": v.size if v else None,
            "color": v.color if v else None,
            "quantity": self.quantity,
            "price": money_json(self.price_snapshot),
            "line_total": money_json(self.line_total_dec()),
        }
