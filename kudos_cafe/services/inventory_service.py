import csv
import io
import logging
from decimal import Decimal

from kudos_cafe.extensions import db
from kudos_cafe.models import InventoryItem, StockMovement, StockMovementType
from kudos_cafe.services.refund_policy import to_money

logger = logging.getLogger(__name__)

OUT_OF_STOCK = 'Out of Stock'
LOW_STOCK = 'Low Stock'
IN_STOCK = 'In Stock'

EXPORT_COLUMNS = [
    'Name',
    'SKU',
    'Category',
    'Current Stock',
    'Min Level',
    'Price',
    'Location',
    'Status',
]


def stock_status(item) -> str:
    current = Decimal(str(item.current_stock or 0))
    minimum = Decimal(str(item.min_stock_level or 0))
    if current <= 0:
        return OUT_OF_STOCK
    if current <= minimum:
        return LOW_STOCK
    return IN_STOCK


def low_stock_items():
    items = InventoryItem.query.filter_by(is_active=True).all()
    return [i for i in items if stock_status(i) != IN_STOCK]


def serialize_item(item):
    return {
        'id': item.id,
        'name': item.name,
        'sku': item.sku,
        'category': item.category,
        'current_stock': float(item.current_stock or 0),
        'min_stock_level': float(item.min_stock_level or 0),
        'current_price': (
            float(item.current_price)
            if item.current_price is not None else None
        ),
        'storage_location': item.storage_location,
        'unit_of_measurement': item.unit_of_measurement,
        'is_active': item.is_active,
        'status': stock_status(item),
    }


def export_csv(items) -> str:
    """Render inventory rows as CSV text with a header line.

    Values go through ``csv.writer`` so names containing commas, quotes
    or newlines stay in their own cell.
    """
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_COLUMNS)
    count = 0
    for item in items:
        writer.writerow([
            item.name,
            item.sku or '',
            item.category or '',
            item.current_stock if item.current_stock is not None else 0,
            item.min_stock_level if item.min_stock_level is not None else 0,
            item.current_price if item.current_price is not None else '',
            item.storage_location or '',
            stock_status(item),
        ])
        count += 1
    logger.info("Exported %s inventory rows", count)
    return buf.getvalue()


def record_movement(item, movement_type, quantity, actor_id=None,
                    unit_price=None, reason=None):
    """Adjust stock on hand and keep a movement row for it.

    ``IN`` adds stock, and a given unit price becomes the item's current
    price. ``OUT`` removes stock and never takes it below zero. The
    caller commits.
    """
    if not isinstance(movement_type, StockMovementType):
        try:
            movement_type = StockMovementType(
                str(movement_type or '').strip().upper())
        except ValueError:
            raise ValueError('Movement type must be IN or OUT')
    try:
        quantity = to_money(quantity)
        if unit_price is not None:
            unit_price = to_money(unit_price)
    except ArithmeticError:
        raise ValueError('Invalid number')
    if quantity <= 0:
        raise ValueError('Quantity must be positive')
    if unit_price is not None and unit_price < 0:
        raise ValueError('Unit price cannot be negative')

    current = to_money(item.current_stock or 0)
    if movement_type == StockMovementType.IN:
        item.current_stock = current + quantity
        if unit_price is not None:
            item.current_price = unit_price
        default_reason = 'Restock'
    else:
        if quantity > current:
            raise ValueError('Cannot remove more stock than available')
        item.current_stock = current - quantity
        default_reason = 'Stock usage'

    movement = StockMovement(
        item=item,
        movement_type=movement_type,
        quantity=quantity,
        unit_price=unit_price,
        total_cost=(
            to_money(quantity * unit_price)
            if unit_price is not None else None
        ),
        reason=(reason or '').strip() or default_reason,
        created_by=actor_id,
    )
    db.session.add(movement)
    logger.info(
        "Stock %s %s x%s, now %s",
        movement_type.value, item.name, quantity, item.current_stock)
    return movement


def serialize_movement(movement):
    return {
        'id': movement.id,
        'item_id': movement.item_id,
        'movement_type': movement.movement_type.value,
        'quantity': float(movement.quantity),
        'unit_price': (
            float(movement.unit_price)
            if movement.unit_price is not None else None
        ),
        'total_cost': (
            float(movement.total_cost)
            if movement.total_cost is not None else None
        ),
        'reason': movement.reason,
        'created_by': movement.created_by,
        'created_at': movement.created_at.isoformat(),
    }
