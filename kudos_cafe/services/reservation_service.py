"""Table bookings.

A table is held for ``SEATING_MINUTES`` from the booked slot; two live
bookings on one table may not start closer together than that.
"""
from datetime import date, datetime, time
import logging

from sqlalchemy.exc import SQLAlchemyError

from kudos_cafe.extensions import db
from kudos_cafe.models import (
    DiningTable,
    Order,
    OrderStatus,
    OrderType,
    Reservation,
    ReservationStatus,
)
from kudos_cafe.services.refund_policy import to_money

logger = logging.getLogger(__name__)

# Half-hour slots from 11:00 to 21:30
TIME_SLOTS = [
    time(hour, minute)
    for hour in range(11, 22)
    for minute in (0, 30)
]

SEATING_MINUTES = 120
MIN_PARTY_SIZE = 1
MAX_PARTY_SIZE = 12

ACTIVE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)

STATUS_TRANSITIONS = {
    ReservationStatus.PENDING: {
        ReservationStatus.CONFIRMED,
        ReservationStatus.CANCELLED,
    },
    ReservationStatus.CONFIRMED: {
        ReservationStatus.COMPLETED,
        ReservationStatus.CANCELLED,
    },
}


class SlotTakenError(ValueError):
    """The table already has a live booking too close to this slot."""


def parse_date(value) -> date:
    try:
        return datetime.strptime(str(value or ''), '%Y-%m-%d').date()
    except ValueError:
        raise ValueError('Date must be given as YYYY-MM-DD')


def parse_slot(value) -> time:
    try:
        slot = datetime.strptime(str(value or ''), '%H:%M').time()
    except ValueError:
        raise ValueError('Time must be given as HH:MM')
    if slot not in TIME_SLOTS:
        raise ValueError('We take bookings every half hour, 11:00 to 21:30')
    return slot


def parse_party_size(value) -> int:
    try:
        size = int(value)
    except (TypeError, ValueError):
        raise ValueError('Party size must be a whole number')
    if not MIN_PARTY_SIZE <= size <= MAX_PARTY_SIZE:
        raise ValueError(
            f'Party size must be between {MIN_PARTY_SIZE} '
            f'and {MAX_PARTY_SIZE}')
    return size


def _minutes(slot: time) -> int:
    return slot.hour * 60 + slot.minute


def overlaps(first: time, second: time) -> bool:
    return abs(_minutes(first) - _minutes(second)) < SEATING_MINUTES


def _booked_table_ids(day, slot):
    rows = Reservation.query.filter(
        Reservation.reservation_date == day,
        Reservation.status.in_(ACTIVE_STATUSES),
    ).all()
    return {
        r.table_id for r in rows
        if overlaps(r.reservation_time, slot)
    }


def available_tables(day, slot, party_size):
    """Open tables big enough for the party, smallest first."""
    taken = _booked_table_ids(day, slot)
    tables = DiningTable.query.filter(
        DiningTable.is_available.is_(True),
        DiningTable.capacity >= party_size,
    ).order_by(
        DiningTable.capacity.asc(),
        DiningTable.table_number.asc(),
    ).all()
    return [t for t in tables if t.id not in taken]


def _commit():
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.error("Reservation write failed", exc_info=True)
        raise


def _linked_order(order_id, user_id):
    order = Order.query.filter_by(id=order_id, user_id=user_id).first()
    if order is None:
        raise LookupError('Order not found')
    if order.order_type != OrderType.DINE_IN:
        raise ValueError('Only dine-in orders can hold a table')
    if order.status == OrderStatus.CANCELLED:
        raise ValueError('Order has been cancelled')
    if order.reservations.filter(
            Reservation.status.in_(ACTIVE_STATUSES)).count():
        raise ValueError('Order already has a table booked')
    return order


def book_table(user_id, table_id, day, slot, party_size,
               special_requests=None, order_id=None, deposit_amount=None,
               today=None):
    table = db.session.get(DiningTable, table_id)
    if table is None:
        raise LookupError('Table not found')
    if day < (today or date.today()):
        raise ValueError('Bookings cannot be made for past dates')
    if not table.is_available:
        raise ValueError(
            f'Table {table.table_number} is not open for booking')
    if table.capacity < party_size:
        raise ValueError(
            f'Table {table.table_number} seats {table.capacity} at most')
    if table.id in _booked_table_ids(day, slot):
        raise SlotTakenError(
            f'Table {table.table_number} is already booked around that time')

    if deposit_amount is not None:
        try:
            deposit_amount = to_money(deposit_amount)
        except ArithmeticError:
            raise ValueError('Invalid deposit amount')
        if deposit_amount < 0:
            raise ValueError('Deposit cannot be negative')

    order = _linked_order(order_id, user_id) if order_id else None

    reservation = Reservation(
        user_id=user_id,
        table_id=table.id,
        order_id=order.id if order else None,
        party_size=party_size,
        reservation_date=day,
        reservation_time=slot,
        special_requests=(special_requests or '').strip() or None,
        deposit_amount=deposit_amount,
        status=ReservationStatus.PENDING,
    )
    db.session.add(reservation)
    _commit()
    logger.info(
        "Table %s booked for %s %s (party of %s)",
        table.table_number, day, slot.strftime('%H:%M'), party_size)
    return reservation


def change_status(reservation, status):
    """Move a booking along; raises ValueError on a disallowed step."""
    if not isinstance(status, ReservationStatus):
        try:
            status = ReservationStatus(str(status or '').strip().lower())
        except ValueError:
            raise ValueError('Invalid reservation status')
    allowed = STATUS_TRANSITIONS.get(reservation.status, set())
    if status not in allowed:
        raise ValueError(
            f'Cannot change a {reservation.status.value} reservation '
            f'to {status.value}')
    reservation.status = status
    _commit()
    return reservation


def cancel_for_order(order) -> int:
    """Cancel the live bookings of a cancelled order.

    Leaves committing to the caller so it lands with the order change.
    """
    released = 0
    for reservation in order.reservations.filter(
            Reservation.status.in_(ACTIVE_STATUSES)).all():
        reservation.status = ReservationStatus.CANCELLED
        released += 1
    return released


def serialize_table(table):
    return {
        'id': table.id,
        'table_number': table.table_number,
        'capacity': table.capacity,
        'location': table.location,
        'is_available': table.is_available,
    }


def serialize_reservation(reservation):
    table = reservation.table
    return {
        'id': reservation.id,
        'user_id': reservation.user_id,
        'customer_name': (
            reservation.user.display_name if reservation.user else None
        ),
        'table': serialize_table(table) if table else None,
        'order_id': reservation.order_id,
        'party_size': reservation.party_size,
        'reservation_date': reservation.reservation_date.isoformat(),
        'reservation_time': reservation.reservation_time.strftime('%H:%M'),
        'special_requests': reservation.special_requests,
        'deposit_amount': (
            float(reservation.deposit_amount)
            if reservation.deposit_amount is not None else None
        ),
        'status': reservation.status.value,
        'created_at': reservation.created_at.isoformat(),
    }
