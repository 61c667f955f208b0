"""
Booking, payment, PIN and extension steps.

Each step validates what it can see locally, then issues the remote calls.
Transactional behaviour (box + rental consistency) belongs to the remote
procedures; nothing here attempts a rollback of remote state.
"""
import datetime
import uuid

from sqlalchemy.exc import IntegrityError

from brankas.extensions import bcrypt, db
from brankas.models.audit import SubmissionKey
from brankas.services.validation_service import (
    check_box_bookable,
    check_pin_settable,
    check_rental_extendable,
    check_rental_payable,
    extension_price_for,
    is_valid_pin,
    price_for_duration,
)


class RentalFlowError(Exception):
    """A precondition failed; the message is shown to the user as-is."""

    def __init__(self, message):
        super().__init__(message)
        self.message = message


def ensure_user_record(client, auth_session):
    """Create the public users row for the signed-in user if it is missing."""
    existing = client.select_one('users', 'id', id=auth_session.user_id)
    if existing:
        return existing
    return client.insert('users', {
        'id': auth_session.user_id,
        'email': auth_session.email,
        'full_name': auth_session.full_name or auth_session.email.split('@')[0],
        'created_at': datetime.datetime.utcnow().isoformat(),
    })


def load_bookable_box(client, box_id):
    if not box_id:
        raise RentalFlowError("No box selected.")
    box = client.select_one('boxes', 'id, box_code, status', id=box_id)
    ok, message = check_box_bookable(box)
    if not ok:
        raise RentalFlowError(message)
    return box


def create_booking(client, auth_session, box_id, rent_duration, items_type):
    """Create a pending rental for ``box_id`` and flip the box to pending."""
    price = price_for_duration(rent_duration)
    if price is None:
        raise RentalFlowError("Invalid duration selected")

    # Re-check availability right before mutating anything
    box = load_bookable_box(client, box_id)

    ensure_user_record(client, auth_session)

    rental = client.insert('rentals', {
        'user_id': auth_session.user_id,
        'box_id': box['id'],
        'status': 'pending',
        'price': price,
        'payment_status': 'pending',
        'pin_code': '',
        'items_type': items_type,
        'rent_duration': rent_duration,
        'barcode': str(uuid.uuid4()),
    })
    if not rental:
        raise RentalFlowError("Failed to create rental.")

    client.update('boxes', {'status': 'pending'}, id=box['id'])
    return rental


def load_rental(client, rental_id, user_id, columns='*'):
    """Fetch a rental owned by ``user_id``; None when missing or not theirs."""
    if not rental_id:
        return None
    rental = client.select_one('rentals', columns, id=rental_id)
    if not rental or str(rental.get('user_id')) != str(user_id):
        return None
    return rental


def load_box_for(client, rental):
    box = client.select_one('boxes', 'id, box_code, status', id=rental['box_id'])
    if not box:
        raise RentalFlowError("Could not find the associated box details.")
    return box


def total_paid(client, rental_id):
    payments = client.select('payments', 'amount', rental_id=rental_id)
    return round(sum(float(p.get('amount') or 0) for p in payments), 2)


# --- Idempotency ledger ---

def submission_seen(key) -> bool:
    return SubmissionKey.query.filter_by(key=key).first() is not None


def claim_submission(key, scope, rental_id, user_id=None) -> bool:
    """Record ``key`` as used. False when it was already claimed."""
    db.session.add(SubmissionKey(key=key, scope=scope, rental_id=str(rental_id), user_id=user_id))
    try:
        db.session.commit()
        return True
    except IntegrityError:
        db.session.rollback()
        return False


def release_submission(key):
    SubmissionKey.query.filter_by(key=key).delete()
    db.session.commit()


def settle_payment(client, rental, payment_method, request_id, user_id=None) -> bool:
    """
    Settle a pending rental through ``handle_successful_payment``.
    Returns False when this submission was already processed.
    """
    if submission_seen(request_id):
        return False
    ok, message = check_rental_payable(rental)
    if not ok:
        raise RentalFlowError(message)

    if not claim_submission(request_id, 'payment', rental['id'], user_id):
        return False
    try:
        client.rpc('handle_successful_payment', {
            'rental_id_input': rental['id'],
            'box_id_input': rental['box_id'],
            'payment_method_input': payment_method,
        }, idempotency_key=request_id)
    except Exception:
        release_submission(request_id)
        raise
    return True


def set_rental_pin(client, rental, pin):
    ok, message = check_pin_settable(rental)
    if not ok:
        raise RentalFlowError(message)
    if not is_valid_pin(pin):
        raise RentalFlowError("PIN must be exactly 4 digits.")

    pin_hash = bcrypt.generate_password_hash(pin).decode('utf-8')
    client.update('rentals', {'pin_code': pin_hash}, id=rental['id'])


def pin_matches(rental, pin) -> bool:
    stored = rental.get('pin_code') if rental else None
    if not stored:
        return False
    return bcrypt.check_password_hash(stored, pin)


def extend_rental(client, rental, duration, payment_method, request_id, user_id=None) -> bool:
    if submission_seen(request_id):
        return False
    ok, message = check_rental_extendable(rental)
    if not ok:
        raise RentalFlowError(message)
    price = extension_price_for(duration)
    if price is None:
        raise RentalFlowError("Invalid extension duration selected.")

    if not claim_submission(request_id, 'extension', rental['id'], user_id):
        return False
    try:
        client.rpc('handle_rental_extension', {
            'rental_id_input': rental['id'],
            'duration_to_add': duration,
            'payment_method_input': payment_method,
            'extension_price': price,
        }, idempotency_key=request_id)
    except Exception:
        release_submission(request_id)
        raise
    return True


def list_orders(client, user_id):
    """The user's rentals, newest first, joined with box and paid amount."""
    rentals = client.select('rentals', '*', order='created_at.desc', user_id=user_id)
    orders = []
    for rental in rentals:
        box = client.select_one('boxes', 'box_code, status', id=rental['box_id']) or {}
        order = dict(rental)
        order['box_code'] = box.get('box_code', 'N/A')
        order['box_status'] = box.get('status', 'unavailable')
        order['total_amount'] = total_paid(client, rental['id'])
        orders.append(order)
    return orders
