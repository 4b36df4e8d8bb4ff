# storefront/services/inventory.py
"""
Inventory ledger: the only writer of ``ProductVariant.stock``.

Both operations run inside the caller's transaction; committing or rolling
back is the caller's job. A reservation is a single conditional UPDATE so the
database, not the application, decides who gets the last unit.
"""
import logging
from sqlalchemy import update, select
from ..extensions import db
from ..model import ProductVariant

log = logging.getLogger(__name__)


def _check_qty(quantity) -> int:
    qty = int(quantity)
    if qty < 1:
        raise ValueError("quantity must be >= 1")
    return qty


def reserve(variant_id: int, quantity: int) -> bool:
    """Decrement stock by ``quantity`` if enough is left. False = insufficient_stock."""
    qty = _check_qty(quantity)
    result = db.session.execute(
        update(ProductVariant)
        .where(
            ProductVariant.id == variant_id,
            ProductVariant.is_active.is_(True),
            ProductVariant.stock >= qty,
        )
        .values(stock=ProductVariant.stock - qty)
        .execution_options(synchronize_session=False)
    )
    ok = result.rowcount == 1
    if not ok:
        log.info("reserve refused: variant=%s qty=%s", variant_id, qty)
    return ok


def release(variant_id: int, quantity: int) -> bool:
    """Give ``quantity`` units back. Returns False if the variant is gone."""
    qty = _check_qty(quantity)
    result = db.session.execute(
        update(ProductVariant)
        .where(ProductVariant.id == variant_id)
        .values(stock=ProductVariant.stock + qty)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        log.warning("release skipped, variant %s no longer exists (qty=%s)", variant_id, qty)
        return False
    return True


def available(variant_id: int) -> int:
    stock = db.session.execute(
        select(ProductVariant.stock).where(ProductVariant.id == variant_id)
    ).scalar_one_or_none()
    return int(stock or 0)
