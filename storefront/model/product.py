# storefront/model/product.py
from sqlalchemy.sql import func
from ..extensions import db


class Product(db.Model):
    __tablename__ = "product"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    slug = db.Column(db.String(255), unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    variants = db.relationship(
        "ProductVariant",
        backref="product",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProductVariant.id.asc()",
    )


class ProductVariant(db.Model):
    """
    Sellable unit. ``stock`` is owned by the inventory ledger
    (services/inventory.py); nothing else writes it after creation.
    """
    __tablename__ = "product_variant"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_product_variant_stock_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False, index=True)

    size = db.Column(db.String(32), nullable=False)       # e.g. "M", "42"
    color = db.Column(db.String(64), nullable=False)      # e.g. "Black"
    sku = db.Column(db.String(64), unique=True, nullable=True)

    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    @property
    def label(self) -> str:
        name = self.product.name if self.product else f"variant {self.id}"
        return f"{name} ({self.size}/{self.color})"
