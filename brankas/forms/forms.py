import uuid

from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, SubmitField, SelectField, RadioField, HiddenField
from wtforms.validators import DataRequired, Length, Optional

from brankas.services.validation_service import DURATION_LABELS, EXTENSION_PRICES, DURATION_PRICES, PAYMENT_METHODS


def _duration_choices(prices):
    return [(code, f"{DURATION_LABELS[code]} - ${price:.2f}") for code, price in prices.items()]


class RequestIdMixin:
    """Hidden per-render submission id used as the idempotency key."""

    def fill_request_id(self):
        if not self.request_id.data:
            self.request_id.data = str(uuid.uuid4())


# --- Booking flow ---
class BookingForm(FlaskForm):
    rent_duration = RadioField('Rental Duration', choices=_duration_choices(DURATION_PRICES), default='one_day', validate_choice=False)
    items_type = StringField('What will you store?', validators=[DataRequired(message="Please describe the items."), Length(max=200)])
    submit = SubmitField('Continue to Payment')


class PaymentForm(RequestIdMixin, FlaskForm):
    payment_method = RadioField('Payment Method', choices=PAYMENT_METHODS, default='credit_card',
                                validators=[DataRequired(message="Please select a payment method.")])
    request_id = HiddenField(validators=[DataRequired()])
    submit = SubmitField('Pay Now')


class PinForm(FlaskForm):
    # Format is checked by is_valid_pin so the user sees the flow message
    pin = PasswordField('4-digit PIN', validators=[DataRequired(message="PIN must be exactly 4 digits.")])
    submit = SubmitField('Set PIN')


class ExtendForm(RequestIdMixin, FlaskForm):
    duration = RadioField('Extend by', choices=_duration_choices(EXTENSION_PRICES), default='one_day', validate_choice=False)
    payment_method = SelectField('Payment Method', choices=PAYMENT_METHODS, default='credit_card')
    request_id = HiddenField(validators=[DataRequired()])
    submit = SubmitField('Pay & Extend')


class ProfileForm(FlaskForm):
    full_name = StringField('Full Name', validators=[DataRequired(message="Full name cannot be empty."), Length(max=120)])
    current_password = PasswordField('Current Password', validators=[DataRequired(message="Please enter your password to confirm.")])
    submit = SubmitField('Save Changes')


# --- Admin ---
class BoxForm(FlaskForm):
    box_code = StringField('Box Code', validators=[Optional(), Length(max=20)])
    submit = SubmitField('Add Box')


class BoxStatusForm(FlaskForm):
    box_id = HiddenField(validators=[DataRequired()])
    status = SelectField('Status', choices=[
        ('available', 'Available'),
        ('unavailable', 'Unavailable'),
        ('pending', 'Pending'),
    ])
    submit = SubmitField('Save')


class ConfirmActionForm(FlaskForm):
    target_id = HiddenField(validators=[DataRequired()])
    submit = SubmitField('Confirm')
