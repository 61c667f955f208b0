from concurrent.futures import ThreadPoolExecutor
from functools import wraps

from flask import Blueprint, render_template, redirect, url_for, request, flash, g, current_app
from flask_login import login_required

from brankas.forms.forms import BoxForm, BoxStatusForm, ConfirmActionForm
from brankas.services.backend import BackendError
from brankas.services.validation_service import log_event
from brankas.session import get_client, get_holder

admin = Blueprint('admin', __name__)

SIGNUP_RANGES = (7, 30)
SUMMARY_PROMPT = 'Please provide a concise summary of this weekly report with one key recommendation.'


# --- Admin Required decorator ---
def admin_required(f):
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not g.get('is_admin'):
            return redirect(url_for('auth.admin_login'))
        return f(*args, **kwargs)
    return decorated_function


def fetch_parallel(client, calls):
    """
    Run several remote procedures at once and join them.
    ``calls`` maps a result name to ``(procedure, params)``. The first failure
    propagates once every call has finished.
    """
    with ThreadPoolExecutor(max_workers=len(calls)) as executor:
        futures = {name: executor.submit(client.rpc, proc, params) for name, (proc, params) in calls.items()}
        return {name: future.result() for name, future in futures.items()}


def _first(rows):
    if isinstance(rows, list):
        return rows[0] if rows else {}
    return rows or {}


def _admin_id():
    return get_holder().session.user_id


# --- Dashboard ---
@admin.route('/')
@admin.route('/dashboard')
@admin_required
def dashboard():
    try:
        data = fetch_parallel(get_client(), {
            'revenue': ('get_revenue_summary', None),
            'boxes': ('get_box_summary', None),
            'activity': ('get_weekly_activity', None),
        })
    except BackendError as e:
        current_app.logger.error("Dashboard load failed: %s", e.message)
        return render_template('admin_dashboard.html', error='Failed to load dashboard data.')

    activity = data['activity'] or []
    max_count = max([row.get('count') or 0 for row in activity] + [1])
    return render_template(
        'admin_dashboard.html',
        error=None,
        revenue=_first(data['revenue']),
        box_summary=_first(data['boxes']),
        activity=activity,
        max_count=max_count,
    )


# --- Customers ---
@admin.route('/customers')
@admin_required
def customers():
    days_range = request.args.get('range', 7, type=int)
    if days_range not in SIGNUP_RANGES:
        days_range = 7
    try:
        data = fetch_parallel(get_client(), {
            'customers': ('get_all_customers', None),
            'signups': ('get_daily_signups', {'days_range': days_range}),
        })
    except BackendError as e:
        current_app.logger.error("Customer page load failed: %s", e.message)
        return render_template('admin_customers.html', error='Failed to load customer data.', days_range=days_range)

    signups = data['signups'] or []
    max_count = max([row.get('count') or 0 for row in signups] + [1])
    return render_template('admin_customers.html', error=None, customers=data['customers'] or [],
                           signups=signups, max_count=max_count, days_range=days_range,
                           delete_form=ConfirmActionForm())


@admin.route('/customers/delete', methods=['POST'])
@admin_required
def delete_customer():
    form = ConfirmActionForm()
    if form.validate_on_submit():
        user_id = form.target_id.data
        try:
            get_client().rpc('delete_user_and_data', {'user_id_to_delete': user_id})
        except BackendError as e:
            log_event('ADMIN_DELETE_USER', 'FAILURE', {'target': user_id, 'error': e.message}, _admin_id(), request.remote_addr)
            flash(f"Failed to delete customer: {e.message}", 'danger')
            return redirect(url_for('admin.customers'))
        log_event('ADMIN_DELETE_USER', 'SUCCESS', {'target': user_id}, _admin_id(), request.remote_addr)
        flash('Customer and all related data deleted.', 'success')
    return redirect(url_for('admin.customers'))


# --- Payments ---
@admin.route('/payments')
@admin_required
def payments():
    try:
        data = fetch_parallel(get_client(), {
            'summary': ('get_payment_summary', None),
            'payments': ('get_all_payments', None),
            'methods': ('get_payment_method_distribution', None),
        })
    except BackendError as e:
        current_app.logger.error("Payments page load failed: %s", e.message)
        return render_template('admin_payments.html', error='Failed to load payment data.')

    methods = data['methods'] or []
    total_methods = sum(row.get('count') or 0 for row in methods) or 1
    return render_template('admin_payments.html', error=None, summary=_first(data['summary']),
                           payments=data['payments'] or [], methods=methods, total_methods=total_methods)


# --- Boxes & rentals ---
@admin.route('/rentals')
@admin_required
def rentals():
    try:
        data = fetch_parallel(get_client(), {
            'boxes': ('get_all_boxes', None),
            'rentals': ('get_all_rentals', None),
        })
    except BackendError as e:
        current_app.logger.error("Rentals page load failed: %s", e.message)
        return render_template('admin_rentals.html', error='Failed to load rental data.')

    return render_template('admin_rentals.html', error=None, boxes=data['boxes'] or [],
                           rentals=data['rentals'] or [], box_form=BoxForm(),
                           status_form=BoxStatusForm(), end_form=ConfirmActionForm())


@admin.route('/boxes/create', methods=['POST'])
@admin_required
def create_box():
    form = BoxForm()
    if not form.validate_on_submit():
        flash('Invalid box data.', 'danger')
        return redirect(url_for('admin.rentals'))

    box_code = (form.box_code.data or '').strip().upper()
    if not box_code:
        flash('Box Code cannot be empty.', 'danger')
        return redirect(url_for('admin.rentals'))
    try:
        get_client().insert('boxes', {'box_code': box_code, 'status': 'available'})
    except BackendError as e:
        flash(f"Failed to add box: {e.message}", 'danger')
        return redirect(url_for('admin.rentals'))

    log_event('ADMIN_CREATE_BOX', 'SUCCESS', {'box_code': box_code}, _admin_id(), request.remote_addr)
    flash(f'Box {box_code} added.', 'success')
    return redirect(url_for('admin.rentals'))


@admin.route('/boxes/status', methods=['POST'])
@admin_required
def update_box_status():
    form = BoxStatusForm()
    if not form.validate_on_submit():
        flash('Invalid box status.', 'danger')
        return redirect(url_for('admin.rentals'))
    try:
        get_client().update('boxes', {'status': form.status.data}, id=form.box_id.data)
    except BackendError as e:
        flash(f"Failed to update box: {e.message}", 'danger')
        return redirect(url_for('admin.rentals'))

    log_event('ADMIN_BOX_STATUS', 'SUCCESS', {'box_id': form.box_id.data, 'status': form.status.data},
              _admin_id(), request.remote_addr)
    flash('Box status updated.', 'success')
    return redirect(url_for('admin.rentals'))


@admin.route('/rentals/end', methods=['POST'])
@admin_required
def end_rental():
    form = ConfirmActionForm()
    if form.validate_on_submit():
        rental_id = form.target_id.data
        try:
            get_client().rpc('admin_end_rental', {'rental_id_input': rental_id})
        except BackendError as e:
            flash(f"Failed to end rental: {e.message}", 'danger')
            return redirect(url_for('admin.rentals'))
        log_event('ADMIN_END_RENTAL', 'SUCCESS', {'rental_id': rental_id}, _admin_id(), request.remote_addr)
        flash('Rental ended.', 'success')
    return redirect(url_for('admin.rentals'))


# --- Weekly report ---
# The AI summary and chat run in the page (static/js/report_chat.js) against
# /api/report-ai; the transcript never touches the session cookie.
@admin.route('/report')
@admin_required
def report():
    client = get_client()
    try:
        available = client.rpc('get_available_reports') or []
    except BackendError as e:
        current_app.logger.error("Could not list reports: %s", e.message)
        return render_template('admin_report.html', error='Failed to load reports.', reports=[])

    if not available:
        return render_template('admin_report.html', error=None, reports=[], report=None)

    report_id = request.args.get('report_id') or str(available[0]['id'])
    try:
        report_data = client.select_one('weekly_reports', '*', id=report_id)
    except BackendError as e:
        return render_template('admin_report.html', error=e.message, reports=available)
    if not report_data:
        return render_template('admin_report.html', error='Report not found.', reports=available)

    return render_template('admin_report.html', error=None, reports=available, report=report_data,
                           selected_id=report_id, summary_prompt=SUMMARY_PROMPT)
