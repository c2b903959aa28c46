from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError
from kudos_cafe.models import Reservation, ReservationStatus
from kudos_cafe.middleware import role_required
from kudos_cafe.services import reservation_service as bookings
from kudos_cafe.services.audit_service import log_audit
from kudos_cafe.utils import request_data, store_error_response
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('reservations', __name__)


@bp.route('/api/public/tables/available', methods=['GET'])
def available_tables():
    try:
        day = bookings.parse_date(request.args.get('date'))
        slot = bookings.parse_slot(request.args.get('time'))
        party_size = bookings.parse_party_size(
            request.args.get('party_size', 2))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    tables = bookings.available_tables(day, slot, party_size)
    return jsonify({
        'date': day.isoformat(),
        'time': slot.strftime('%H:%M'),
        'party_size': party_size,
        'tables': [bookings.serialize_table(t) for t in tables],
    })


@bp.route('/api/public/tables/slots', methods=['GET'])
def time_slots():
    return jsonify({
        'slots': [s.strftime('%H:%M') for s in bookings.TIME_SLOTS],
        'max_party_size': bookings.MAX_PARTY_SIZE,
        'seating_minutes': bookings.SEATING_MINUTES,
    })


@bp.route('/api/reservations', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def book():
    data = request_data()
    try:
        table_id = int(data.get('table_id'))
    except (TypeError, ValueError):
        return jsonify({'error': 'Choose a table'}), 400

    order_id = data.get('order_id')
    try:
        order_id = int(order_id) if order_id else None
    except (TypeError, ValueError):
        return jsonify({'error': 'Invalid order'}), 400

    try:
        reservation = bookings.book_table(
            current_user.id,
            table_id,
            bookings.parse_date(data.get('date')),
            bookings.parse_slot(data.get('time')),
            bookings.parse_party_size(data.get('party_size')),
            special_requests=data.get('special_requests'),
            order_id=order_id,
            deposit_amount=data.get('deposit_amount'),
        )
    except LookupError as e:
        return jsonify({'error': str(e)}), 404
    except bookings.SlotTakenError as e:
        return jsonify({'error': str(e)}), 409
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        return store_error_response('book the table')

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='RESERVATION_CREATE',
        target_type='RESERVATION',
        target_id=reservation.id,
        payload={
            'table_id': table_id,
            'date': reservation.reservation_date.isoformat(),
            'time': reservation.reservation_time.strftime('%H:%M'),
            'party_size': reservation.party_size,
        })
    return jsonify({
        'ok': True,
        'reservation': bookings.serialize_reservation(reservation),
    }), 201


@bp.route('/api/reservations/mine', methods=['GET'])
@login_required
@role_required('CUSTOMER')
def my_reservations():
    rows = Reservation.query.filter_by(user_id=current_user.id).order_by(
        Reservation.reservation_date.desc(),
        Reservation.reservation_time.desc(),
    ).all()
    return jsonify({
        'items': [bookings.serialize_reservation(r) for r in rows],
    })


@bp.route('/api/reservations/<int:reservation_id>/cancel', methods=['POST'])
@login_required
@role_required('CUSTOMER')
def cancel(reservation_id):
    reservation = Reservation.query.filter_by(
        id=reservation_id,
        user_id=current_user.id,
    ).first_or_404()
    try:
        bookings.change_status(reservation, ReservationStatus.CANCELLED)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except SQLAlchemyError:
        return store_error_response('cancel the reservation')

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='RESERVATION_CANCEL',
        target_type='RESERVATION',
        target_id=reservation.id)
    return jsonify({
        'ok': True,
        'reservation': bookings.serialize_reservation(reservation),
    })
