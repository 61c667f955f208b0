from flask import Blueprint, render_template, request, flash, redirect, url_for, current_app
from flask_login import login_required

from brankas.forms.forms import BookingForm, PaymentForm, PinForm, ExtendForm, ProfileForm, ConfirmActionForm
from brankas.services.backend import BackendError
from brankas.services.barcode_service import barcode_data_uri
from brankas.services.notification_service import send_pin_set_email
from brankas.services.rental_service import (
    RentalFlowError,
    create_booking,
    extend_rental,
    list_orders,
    load_bookable_box,
    load_box_for,
    load_rental,
    set_rental_pin,
    settle_payment,
    total_paid,
)
from brankas.services.validation_service import (
    DURATION_LABELS,
    check_pin_settable,
    check_rental_extendable,
    check_rental_payable,
    log_event,
)
from brankas.session import AuthSession, get_client, get_holder
from brankas.utils import is_internal_path

main = Blueprint('main', __name__)


def _auth():
    return get_holder().session


def _rental_or_error(client, missing_message):
    rental = load_rental(client, request.args.get('rentalId'), _auth().user_id)
    if rental is None:
        raise RentalFlowError(missing_message)
    return rental


# --- Box grid ---
@main.route('/')
def index():
    boxes = []
    try:
        boxes = get_client().select('boxes', 'id, box_code, status', order='box_code.asc')
    except BackendError as e:
        current_app.logger.error("Could not load boxes: %s", e.message)
        flash('Could not load deposit boxes. Please try again later.', 'danger')
    return render_template('index.html', boxes=boxes)


# --- Booking ---
@main.route('/booking', methods=['GET', 'POST'])
@login_required
def booking():
    client = get_client()
    box_id = request.args.get('boxId')
    form = BookingForm()
    try:
        box = load_bookable_box(client, box_id)
    except (RentalFlowError, BackendError) as e:
        return render_template('booking.html', form=None, box=None, error=e.message)

    if form.validate_on_submit():
        try:
            rental = create_booking(client, _auth(), box_id, form.rent_duration.data, form.items_type.data)
        except (RentalFlowError, BackendError) as e:
            log_event('BOOKING', 'FAILURE', {'box_id': box_id, 'error': e.message}, _auth().user_id, request.remote_addr)
            flash(e.message, 'danger')
            return render_template('booking.html', form=form, box=box, error=None)

        log_event('BOOKING', 'SUCCESS', {'box_id': box_id, 'rental_id': rental['id'], 'price': rental.get('price')},
                  _auth().user_id, request.remote_addr)
        return redirect(url_for('main.payment', rentalId=rental['id']))

    return render_template('booking.html', form=form, box=box, error=None)


# --- Payment ---
@main.route('/payment', methods=['GET', 'POST'])
@login_required
def payment():
    client = get_client()
    form = PaymentForm()
    try:
        rental = _rental_or_error(client, "Could not find the rental details for this booking.")
        box = load_box_for(client, rental)
    except (RentalFlowError, BackendError) as e:
        return render_template('payment.html', form=None, error=e.message)

    if form.validate_on_submit():
        try:
            processed = settle_payment(client, rental, form.payment_method.data, form.request_id.data, _auth().user_id)
        except (RentalFlowError, BackendError) as e:
            log_event('PAYMENT', 'FAILURE', {'rental_id': rental['id'], 'error': e.message}, _auth().user_id, request.remote_addr)
            flash(f"Payment failed: {e.message}", 'danger')
            return render_template('payment.html', form=form, rental=rental, box=box, error=None)

        if processed:
            log_event('PAYMENT', 'SUCCESS', {'rental_id': rental['id'], 'method': form.payment_method.data},
                      _auth().user_id, request.remote_addr)
        return redirect(url_for('main.set_pin', rentalId=rental['id']))

    ok, message = check_rental_payable(rental)
    if not ok:
        return render_template('payment.html', form=None, rental=rental, box=box, error=message)

    form.fill_request_id()
    return render_template('payment.html', form=form, rental=rental, box=box, error=None,
                           duration_label=DURATION_LABELS.get(rental.get('rent_duration'), ''))


# --- PIN ---
@main.route('/set-pin', methods=['GET', 'POST'])
@login_required
def set_pin():
    client = get_client()
    form = PinForm()
    try:
        rental = _rental_or_error(client, "Could not verify rental status.")
        box = load_box_for(client, rental)
    except (RentalFlowError, BackendError) as e:
        return render_template('set_pin.html', form=None, error=e.message)

    ok, message = check_pin_settable(rental)
    if not ok:
        return render_template('set_pin.html', form=None, rental=rental, error=message)

    if form.is_submitted() and not form.validate():
        for errors in form.errors.values():
            flash(errors[0], 'danger')
    elif form.is_submitted():
        try:
            set_rental_pin(client, rental, form.pin.data)
        except (RentalFlowError, BackendError) as e:
            flash(e.message, 'danger')
            return render_template('set_pin.html', form=form, rental=rental, box=box, error=None)

        log_event('PIN_SET', 'SUCCESS', {'rental_id': rental['id']}, _auth().user_id, request.remote_addr)
        send_pin_set_email(_auth().email, _auth().full_name or _auth().email, box['box_code'])
        return render_template(
            'pin_success.html',
            redirect_url=url_for('main.confirmation', rentalId=rental['id']),
            delay=current_app.config['PIN_REDIRECT_SECONDS'],
        )

    return render_template('set_pin.html', form=form, rental=rental, box=box, error=None)


@main.route('/confirmation')
@login_required
def confirmation():
    client = get_client()
    try:
        rental = _rental_or_error(client, "Could not find this rental.")
        box = load_box_for(client, rental)
    except (RentalFlowError, BackendError) as e:
        return render_template('confirmation.html', rental=None, error=e.message)

    return render_template('confirmation.html', rental=rental, box=box, error=None,
                           barcode_uri=barcode_data_uri(rental.get('barcode')))


# --- Orders ---
@main.route('/my-orders')
@login_required
def my_orders():
    if request.args.get('extended') == 'true':
        flash('Your rental has been extended.', 'success')
    orders = []
    try:
        orders = list_orders(get_client(), _auth().user_id)
    except BackendError as e:
        current_app.logger.error("Could not load orders for %s: %s", _auth().user_id, e.message)
        flash('Could not load your orders. Please try again later.', 'danger')

    for order in orders:
        order['barcode_uri'] = barcode_data_uri(order.get('barcode'))
    return render_template('my_orders.html', orders=orders,
                           refresh_seconds=current_app.config['ORDERS_REFRESH_SECONDS'])


@main.route('/see-details')
@login_required
def see_details():
    client = get_client()
    try:
        rental = _rental_or_error(client, "Could not find this rental.")
        box = load_box_for(client, rental)
        paid = total_paid(client, rental['id'])
    except (RentalFlowError, BackendError) as e:
        return render_template('see_details.html', rental=None, error=e.message)
    return render_template('see_details.html', rental=rental, box=box, total_paid=paid, error=None)


@main.route('/extend-duration', methods=['GET', 'POST'])
@login_required
def extend_duration():
    client = get_client()
    form = ExtendForm()
    try:
        rental = _rental_or_error(client, "Could not find this rental.")
        box = load_box_for(client, rental)
    except (RentalFlowError, BackendError) as e:
        return render_template('extend_duration.html', form=None, error=e.message)

    if form.validate_on_submit():
        try:
            processed = extend_rental(client, rental, form.duration.data, form.payment_method.data,
                                      form.request_id.data, _auth().user_id)
        except (RentalFlowError, BackendError) as e:
            log_event('EXTENSION', 'FAILURE', {'rental_id': rental['id'], 'error': e.message}, _auth().user_id, request.remote_addr)
            flash(e.message, 'danger')
            return render_template('extend_duration.html', form=form, rental=rental, box=box, error=None)

        if processed:
            log_event('EXTENSION', 'SUCCESS', {'rental_id': rental['id'], 'duration': form.duration.data},
                      _auth().user_id, request.remote_addr)
        return redirect(url_for('main.my_orders', extended='true'))

    ok, message = check_rental_extendable(rental)
    if not ok:
        return render_template('extend_duration.html', form=None, rental=rental, box=box, error=message)

    form.fill_request_id()
    return render_template('extend_duration.html', form=form, rental=rental, box=box, error=None)


# --- Notifications ---
@main.route('/notifications')
@login_required
def notifications():
    items = []
    try:
        items = get_client().select('notifications', '*', order='created_at.desc', user_id=_auth().user_id)
    except BackendError as e:
        current_app.logger.error("Could not load notifications: %s", e.message)
        flash('Could not load notifications.', 'danger')
    return render_template('notifications.html', notifications=items, form=ConfirmActionForm())


@main.route('/notifications/open', methods=['POST'])
@login_required
def open_notification():
    form = ConfirmActionForm()
    if not form.validate_on_submit():
        return redirect(url_for('main.notifications'))

    client = get_client()
    try:
        updated = client.update('notifications', {'is_read': True}, id=form.target_id.data, user_id=_auth().user_id)
    except BackendError as e:
        flash(e.message, 'danger')
        return redirect(url_for('main.notifications'))

    link = updated[0].get('link_url') if updated else None
    if is_internal_path(link):
        return redirect(link)
    return redirect(url_for('main.notifications'))


# --- Profile ---
@main.route('/my-profile', methods=['GET', 'POST'])
@login_required
def my_profile():
    client = get_client()
    auth_session = _auth()
    form = ProfileForm()

    if form.validate_on_submit():
        backend = current_app.extensions['backend']
        try:
            payload = backend.client().sign_in_with_password(auth_session.email, form.current_password.data)
        except BackendError:
            flash('Incorrect password. Your profile was not updated.', 'danger')
            return render_template('my_profile.html', form=form, email=auth_session.email)

        fresh_client = backend.client(payload['access_token'], payload.get('refresh_token'))
        try:
            fresh_client.update('users', {'full_name': form.full_name.data}, id=auth_session.user_id)
            payload['user'] = fresh_client.update_user({'data': {'full_name': form.full_name.data}}) or payload.get('user')
        except BackendError as e:
            flash(e.message, 'danger')
            return render_template('my_profile.html', form=form, email=auth_session.email)

        get_holder().on_auth_state_change('USER_UPDATED', AuthSession.from_token_response(payload))
        flash('Profile updated successfully.', 'success')
        return redirect(url_for('main.my_profile'))

    if request.method == 'GET':
        try:
            row = client.select_one('users', 'full_name', id=auth_session.user_id) or {}
        except BackendError as e:
            current_app.logger.warning("Could not load profile: %s", e.message)
            row = {}
        form.full_name.data = row.get('full_name') or auth_session.full_name
    return render_template('my_profile.html', form=form, email=auth_session.email)
