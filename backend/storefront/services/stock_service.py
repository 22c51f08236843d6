# Overview: Stock ledger for product variants; the only writer of stock_qnt.

"""
Stock Ledger

Invariants (authoritative):
- ProductVariant.stock_qnt never goes negative.
- stock_qnt is changed ONLY by adjust_stock(), which is a single
  conditional UPDATE (stock_qnt + delta >= 0). No read-modify-write in
  Python, so concurrent shipments/restocks on one variant cannot race.
- Stock leaves the shelf exactly once per line, when its order ships
  (OrderLine.stock_committed becomes True). restock() is the exact inverse
  and only returns committed lines, so calling it twice is harmless.
- Backordered lines are served first-come-first-served by order date.

adjust_stock(), mark_lines_fulfilled(), allocate_backorders() and
restock() never commit; they run inside the caller's transaction.
"""

from sqlalchemy import func, update

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Order, OrderLine, ProductVariant
from ..models.orders import ORDER_CONFIRMED, ORDER_PENDING, ORDER_TERMINAL_STATUSES
from storefront.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


def adjust_stock(variant_id: int, delta: int) -> bool:
    """
    Atomically apply stock_qnt += delta if the result stays >= 0.

    Returns True when applied, False when it would go negative (nothing is
    written in that case).

    Raises:
        ValidationError: zero delta
        NotFoundError: variant does not exist
    """
    if delta == 0:
        raise ValidationError("Stock change must be non-zero")

    db.session.flush()

    stmt = (
        update(ProductVariant)
        .where(
            ProductVariant.id == variant_id,
            ProductVariant.stock_qnt + delta >= 0,
        )
        .values(
            stock_qnt=ProductVariant.stock_qnt + delta,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    if result.rowcount == 1:
        # Refresh any loaded instance with the committed-to-be value
        db.session.get(ProductVariant, variant_id, populate_existing=True)
        return True

    if db.session.get(ProductVariant, variant_id) is None:
        raise NotFoundError(f"Variant {variant_id} not found")
    return False


def get_stock(variant_id: int) -> ProductVariant:
    variant = db.session.get(ProductVariant, variant_id)
    if not variant:
        raise NotFoundError("Variant not found")
    return variant


def list_backordered_lines(variant_id: int) -> list[OrderLine]:
    """
    Backordered lines of a variant on open orders, oldest order first.
    """
    return (
        db.session.query(OrderLine)
        .join(Order, Order.id == OrderLine.order_id)
        .filter(
            OrderLine.variant_id == variant_id,
            OrderLine.backordered.is_(True),
            Order.status.notin_(ORDER_TERMINAL_STATUSES),
        )
        .order_by(Order.order_date.asc(), OrderLine.id.asc())
        .all()
    )


def mark_lines_fulfilled(line_ids: list[int]) -> int:
    """Clear the backordered flag on the given lines. Returns rows updated."""
    if not line_ids:
        return 0

    updated = (
        db.session.query(OrderLine)
        .filter(OrderLine.id.in_(line_ids))
        .update({OrderLine.backordered: False}, synchronize_session="fetch")
    )
    return updated


def reserved_quantity(variant_id: int) -> int:
    """Units already promised to open, in-stock, not-yet-shipped lines."""
    total = (
        db.session.query(func.coalesce(func.sum(OrderLine.quantity), 0))
        .join(Order, Order.id == OrderLine.order_id)
        .filter(
            OrderLine.variant_id == variant_id,
            OrderLine.backordered.is_(False),
            OrderLine.stock_committed.is_(False),
            Order.status.in_([ORDER_PENDING, ORDER_CONFIRMED]),
        )
        .scalar()
    )
    return int(total or 0)


def allocate_backorders(variant_id: int) -> list[OrderLine]:
    """
    Allocate free stock to backordered lines, oldest order first.

    Free stock is stock_qnt minus what open non-backordered lines will
    consume when they ship. Allocation stops at the first line that does
    not fit, so a large early order is never overtaken by later ones.
    No stock is decremented here; that still happens at shipment.
    """
    variant = lock_for_update(db.session.query(ProductVariant).filter_by(id=variant_id)).first()
    if not variant:
        raise NotFoundError("Variant not found")

    available = variant.stock_qnt - reserved_quantity(variant_id)

    allocated = []
    for line in list_backordered_lines(variant_id):
        if line.quantity > available:
            break
        available -= line.quantity
        allocated.append(line)

    mark_lines_fulfilled([line.id for line in allocated])
    return allocated


def restock(order_id: int) -> int:
    """
    Return every shipped line of an order to stock.

    Only lines whose decrement is outstanding are touched; each is flagged
    back to uncommitted, so a second call restocks nothing.

    Returns:
        Units returned to stock
    """
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")

    lines = (
        db.session.query(OrderLine)
        .filter_by(order_id=order_id, stock_committed=True)
        .order_by(OrderLine.id)
        .all()
    )

    units = 0
    for line in lines:
        adjust_stock(line.variant_id, line.quantity)
        line.stock_committed = False
        units += line.quantity

    return units


def receive_stock(variant_id: int, quantity_change: int) -> tuple[ProductVariant, list[OrderLine]]:
    """
    Admin stock correction or replenishment.

    Positive changes are offered to waiting backorders first.

    Returns:
        (variant, lines allocated from backorder)

    Raises:
        ValidationError: zero change, or the change would go below 0
        NotFoundError: unknown variant
    """
    def _op():
        if not isinstance(quantity_change, int) or isinstance(quantity_change, bool) or quantity_change == 0:
            raise ValidationError("Quantity change must be a non-zero integer")

        if not adjust_stock(variant_id, quantity_change):
            raise ValidationError("Stock cannot go below 0")

        allocated = allocate_backorders(variant_id) if quantity_change > 0 else []

        db.session.commit()
        return get_stock(variant_id), allocated

    return run_with_retry(_op)
