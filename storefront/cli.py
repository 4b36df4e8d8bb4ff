# storefront/cli.py
from decimal import Decimal

import click
import pandas as pd
from flask import current_app
from flask.cli import with_appcontext
from .extensions import db
from .model import Order, Product, ProductVariant

DEMO_CATALOG = [
    {"name": "Linen Shirt", "slug": "linen-shirt", "variants": [
        {"size": "M", "color": "White", "sku": "LS-M-WHT", "price": Decimal("1500.00"), "stock": 10},
        {"size": "L", "color": "White", "sku": "LS-L-WHT", "price": Decimal("1500.00"), "stock": 5},
    ]},
    {"name": "Canvas Sneaker", "slug": "canvas-sneaker", "variants": [
        {"size": "42", "color": "Black", "sku": "CS-42-BLK", "price": Decimal("3200.00"), "stock": 3},
    ]},
]


@click.command("seed-catalog")
@with_appcontext
def seed_catalog():
    """Insert a few demo products and variants (skips existing slugs)."""
    added = 0
    for p in DEMO_CATALOG:
        if Product.query.filter_by(slug=p["slug"]).first():
            continue
        product = Product(name=p["name"], slug=p["slug"])
        product.variants = [ProductVariant(**v) for v in p["variants"]]
        db.session.add(product)
        added += 1
    db.session.commit()
    click.echo(f"{added} products added")


@click.command("reconcile-payments")
@click.option("--older-than", default=10, show_default=True, type=int,
              help="Only poll orders waiting for payment at least this many minutes.")
@click.option("--expire-after", default=None, type=int,
              help="Cancel orders still unpaid after this many minutes "
                   "(default: PAYMENT_PENDING_EXPIRY_MINUTES).")
@with_appcontext
def reconcile_payments(older_than, expire_after):
    """Poll the payment provider for orders whose callback never arrived."""
    from .services.payments import reconcile_pending

    if expire_after is None:
        expire_after = current_app.config.get("PAYMENT_PENDING_EXPIRY_MINUTES")
    counts = reconcile_pending(older_than_minutes=older_than, expire_after_minutes=expire_after)
    click.echo(" ".join(f"{k}={v}" for k, v in counts.items()))


@click.command("export-orders")
@click.option("--status", default=None, help="Only orders in this status.")
@click.option("--out", "out_path", default="orders_export.csv", show_default=True)
@with_appcontext
def export_orders(status, out_path):
    """Write orders (one row per order) to CSV for audit."""
    q = Order.query
    if status:
        q = q.filter(Order.status == status)
    rows = [
        {
            "ID": str(o.id),
            "Order Number": o.order_number,
            "Status": o.status,
            "User ID": o.user_id,
            "Guest Email": o.guest_email,
            "Subtotal": float(o.subtotal or 0),
            "Shipping": float(o.shipping_cost or 0),
            "Discount": float(o.discount or 0),
            "Total": float(o.total or 0),
            "Currency": o.currency,
            "Items": sum(i.quantity for i in o.items),
            "WhatsApp": bool(o.is_whatsapp_order),
            "Payment Provider": o.payment_provider,
            "Payment Ref": o.payment_ref,
            "Paid At": o.paid_at,
            "Created At": o.created_at,
        }
        for o in q.order_by(Order.created_at.asc()).all()
    ]
    df = pd.DataFrame(rows, columns=[
        "ID", "Order Number", "Status", "User ID", "Guest Email", "Subtotal", "Shipping",
        "Discount", "Total", "Currency", "Items", "WhatsApp", "Payment Provider", "Payment Ref",
        "Paid At", "Created At",
    ])
    df.to_csv(out_path, index=False)
    click.echo(f"{len(df)} orders exported to {out_path}")


def register_cli(app):
    app.cli.add_command(seed_catalog)
    app.cli.add_command(reconcile_payments)
    app.cli.add_command(export_orders)
