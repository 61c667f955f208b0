import json
import re
from flask import current_app
from brankas.extensions import db
from brankas.models.audit import ApiLog

# Duration code -> price for a new rental
DURATION_PRICES = {
    'one_day': 5.99,
    'three_days': 14.99,
    'one_week': 29.99,
    'one_month': 99.99,
}

# Duration code -> price for extending an active rental
EXTENSION_PRICES = {
    'one_day': 5.99,
    'three_days': 14.99,
    'one_week': 29.99,
}

DURATION_LABELS = {
    'one_day': 'One day',
    'three_days': 'Three days',
    'one_week': 'One week',
    'one_month': 'One month',
}

DURATION_DAYS = {
    'one_day': 1,
    'three_days': 3,
    'one_week': 7,
    'one_month': 30,
}

PAYMENT_METHODS = [
    ('credit_card', 'Credit Card'),
    ('bank_transfer', 'Bank Transfer'),
    ('digital_wallet', 'Digital Wallet'),
]

_PIN_PATTERN = re.compile(r'[0-9]{4}')


def log_event(event_type, status, details, user_id=None, ip_address=None):
    """Write an audit entry to api_log. Never raises."""
    try:
        log_entry = ApiLog(
            event_type=event_type,
            status=status,
            details=json.dumps(details, ensure_ascii=False, default=str),
            user_id=str(user_id) if user_id else None,
            ip_address=ip_address
        )
        db.session.add(log_entry)
        db.session.commit()
    except Exception as e:
        current_app.logger.error("Could not save audit log %s: %s", event_type, e)
        db.session.rollback()


def price_for_duration(rent_duration):
    """Price of a new rental, or None for an unknown duration code."""
    return DURATION_PRICES.get(rent_duration)


def extension_price_for(duration):
    return EXTENSION_PRICES.get(duration)


def is_valid_pin(pin) -> bool:
    """Exactly four ASCII digits, nothing else."""
    return isinstance(pin, str) and _PIN_PATTERN.fullmatch(pin) is not None


def check_box_bookable(box) -> (bool, str):
    if not box:
        return False, "Box not found."
    if box.get('status') != 'available':
        return False, "Deposit box already rented."
    return True, ""


def check_rental_payable(rental) -> (bool, str):
    if not rental:
        return False, "Could not find the rental details for this booking."
    if rental.get('payment_status') == 'paid':
        return False, "This rental has already been paid for."
    return True, ""


def check_pin_settable(rental) -> (bool, str):
    if not rental:
        return False, "Could not verify rental status."
    if rental.get('payment_status') != 'paid':
        return False, "Payment for this rental has not been completed."
    if rental.get('pin_code'):
        return False, "A PIN has already been set for this rental."
    return True, ""


def check_rental_extendable(rental) -> (bool, str):
    if not rental:
        return False, "Could not find this rental."
    if rental.get('status') != 'active':
        return False, "This rental is not active and cannot be extended."
    return True, ""
