from flask import Blueprint, render_template, redirect, url_for, flash, request, current_app
from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, SubmitField
from wtforms.validators import DataRequired, Email, EqualTo, Length

from brankas.services.backend import BackendError
from brankas.services.rental_service import ensure_user_record
from brankas.services.validation_service import log_event
from brankas.session import AuthSession, get_client, get_holder, lookup_is_admin
from brankas.utils import is_internal_path

auth = Blueprint('auth', __name__)


# --- Forms ---
class LoginForm(FlaskForm):
    email = StringField('Email', validators=[DataRequired(message="Email is required."), Email(message="Please enter a valid email.")])
    password = PasswordField('Password', validators=[DataRequired(message="Password is required.")])
    submit = SubmitField('Sign In')


class RegistrationForm(FlaskForm):
    full_name = StringField('Full Name', validators=[DataRequired(message="This field is required.")])
    email = StringField('Email', validators=[DataRequired(message="This field is required."), Email(message="Please enter a valid email.")])
    password = PasswordField('Password', validators=[DataRequired(message="This field is required."), Length(min=6, message="Password must be at least 6 characters.")])
    password2 = PasswordField('Confirm Password', validators=[DataRequired(message="This field is required."), EqualTo('password', message='Passwords must match.')])
    submit = SubmitField('Create Account')


class ForgotPasswordForm(FlaskForm):
    email = StringField('Email', validators=[DataRequired(), Email()])
    submit = SubmitField('Send Reset Link')


class UpdatePasswordForm(FlaskForm):
    password = PasswordField('New Password', validators=[DataRequired(), Length(min=6, message="Password must be at least 6 characters.")])
    password2 = PasswordField('Confirm New Password', validators=[DataRequired(), EqualTo('password', message='Passwords must match.')])
    submit = SubmitField('Update Password')


def _backend():
    return current_app.extensions['backend']


def _sign_in(payload, event='SIGNED_IN'):
    """Hand a token response to the session holder and return the new session."""
    auth_session = AuthSession.from_token_response(payload)
    get_holder().on_auth_state_change(event, auth_session)
    return auth_session


def _callback_url(**params):
    return url_for('auth.callback', _external=True, **params)


# --- Routes ---
@auth.route('/login', methods=['GET', 'POST'])
def login():
    form = LoginForm()
    if request.args.get('error') == 'auth_error':
        flash('Authentication failed. Please try again.', 'danger')

    if form.validate_on_submit():
        try:
            payload = _backend().client().sign_in_with_password(form.email.data, form.password.data)
        except BackendError as e:
            flash(e.message, 'danger')
            return render_template('login.html', form=form)

        auth_session = _sign_in(payload)
        log_event('LOGIN', 'SUCCESS', {'email': auth_session.email}, auth_session.user_id, request.remote_addr)
        next_page = request.args.get('next')
        return redirect(next_page if is_internal_path(next_page) else url_for('main.index'))

    return render_template('login.html', form=form)


@auth.route('/register', methods=['GET', 'POST'])
def register():
    form = RegistrationForm()
    if form.validate_on_submit():
        try:
            _backend().client().sign_up(
                email=form.email.data,
                password=form.password.data,
                full_name=form.full_name.data,
                redirect_to=_callback_url(),
            )
        except BackendError as e:
            flash(e.message, 'danger')
            return render_template('register.html', form=form)

        flash('Registration successful! Please check your email to confirm your account.', 'success')
        return redirect(url_for('auth.login'))

    return render_template('register.html', form=form)


@auth.route('/auth/google')
def google_sign_in():
    return redirect(_backend().client().sign_in_with_oauth('google', _callback_url()))


@auth.route('/logout')
def logout():
    holder = get_holder()
    if holder.access_token:
        try:
            _backend().client(holder.access_token).sign_out()
        except BackendError as e:
            current_app.logger.info("Remote sign-out failed: %s", e.message)
    holder.on_auth_state_change('SIGNED_OUT', None)
    return redirect(url_for('auth.login'))


@auth.route('/forgot-password', methods=['GET', 'POST'])
def forgot_password():
    form = ForgotPasswordForm()
    if form.validate_on_submit():
        try:
            _backend().client().reset_password_for_email(form.email.data, _callback_url(type='recovery'))
        except BackendError as e:
            current_app.logger.warning("Password reset request failed: %s", e.message)
        # Same answer whether or not the account exists
        flash('If an account exists for this email, a password reset link has been sent.', 'info')
        return redirect(url_for('auth.login'))
    return render_template('forgot_password.html', form=form)


@auth.route('/update-password', methods=['GET', 'POST'])
def update_password():
    holder = get_holder()
    if holder.session is None:
        flash('Your password reset link is invalid or has expired.', 'warning')
        return redirect(url_for('auth.forgot_password'))

    form = UpdatePasswordForm()
    if form.validate_on_submit():
        try:
            get_client().update_user({'password': form.password.data})
        except BackendError as e:
            flash(e.message, 'danger')
            return render_template('update_password.html', form=form)
        flash('Your password has been updated.', 'success')
        return redirect(url_for('main.index'))
    return render_template('update_password.html', form=form)


@auth.route('/auth/callback')
def callback():
    if request.args.get('error'):
        return redirect(url_for('auth.login', error='auth_error'))

    code = request.args.get('code')
    access_token = request.args.get('access_token')
    try:
        if code:
            payload = _backend().client().exchange_code_for_session(code)
        elif access_token:
            user = _backend().client(access_token).get_user()
            payload = {
                'access_token': access_token,
                'refresh_token': request.args.get('refresh_token'),
                'expires_in': request.args.get('expires_in', type=int),
                'user': user,
            }
        else:
            return redirect(url_for('auth.login'))
    except BackendError as e:
        current_app.logger.warning("Auth callback exchange failed: %s", e.message)
        return redirect(url_for('auth.login', error='auth_error'))

    is_recovery = request.args.get('type') == 'recovery'
    auth_session = _sign_in(payload, 'PASSWORD_RECOVERY' if is_recovery else 'SIGNED_IN')
    try:
        ensure_user_record(_backend().client(auth_session.access_token), auth_session)
    except BackendError as e:
        current_app.logger.error("Could not create user record for %s: %s", auth_session.user_id, e.message)

    if is_recovery:
        return redirect(url_for('auth.update_password'))
    next_page = request.args.get('next')
    return redirect(next_page if is_internal_path(next_page) else url_for('main.index'))


@auth.route('/admin/login', methods=['GET', 'POST'])
def admin_login():
    form = LoginForm()
    if form.validate_on_submit():
        client = _backend().client()
        try:
            payload = client.sign_in_with_password(form.email.data, form.password.data)
            auth_session = AuthSession.from_token_response(payload)
            user_client = _backend().client(auth_session.access_token)
            is_admin = lookup_is_admin(user_client, auth_session.user_id)
        except BackendError as e:
            flash(e.message, 'danger')
            return render_template('admin_login.html', form=form)

        if not is_admin:
            try:
                user_client.sign_out()
            except BackendError as e:
                current_app.logger.info("Remote sign-out failed: %s", e.message)
            get_holder().on_auth_state_change('SIGNED_OUT', None)
            log_event('ADMIN_LOGIN', 'DENIED', {'email': auth_session.email}, auth_session.user_id, request.remote_addr)
            flash('You do not have permission to access the admin panel.', 'danger')
            return render_template('admin_login.html', form=form)

        get_holder().on_auth_state_change('SIGNED_IN', auth_session)
        log_event('ADMIN_LOGIN', 'SUCCESS', {'email': auth_session.email}, auth_session.user_id, request.remote_addr)
        return redirect(url_for('admin.dashboard'))

    return render_template('admin_login.html', form=form)
