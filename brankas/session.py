"""
Auth session handling.

The current auth session lives in one ``SessionHolder`` per request. The
holder is only changed through ``on_auth_state_change``; subscribers react to
the change (the cookie writer is one of them) but never redirect. Route
guarding is the pure ``resolve_redirect`` function, evaluated once per request.
"""
import time

from flask import current_app, g, session as cookie_session
from flask_login import UserMixin

from brankas.services.backend import BackendError

SESSION_KEY = 'auth_session'

PUBLIC_PATHS = frozenset([
    '/',
    '/login',
    '/register',
    '/forgot-password',
    '/update-password',
    '/auth/callback',
    '/auth/google',
    '/admin/login',
])
GUEST_ONLY_PATHS = frozenset(['/login', '/register'])
UNGUARDED_PREFIXES = ('/static/', '/api/')


def compact_user(user):
    """Keep only the user fields the app reads; the rest stays out of the cookie."""
    user = user or {}
    metadata = user.get('user_metadata') or {}
    return {
        'id': user.get('id'),
        'email': user.get('email') or '',
        'user_metadata': {'full_name': metadata.get('full_name') or ''},
    }


class AuthSession:
    """Tokens plus the signed-in user's id, email and full name."""

    def __init__(self, access_token, refresh_token=None, expires_at=None, user=None):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.expires_at = expires_at
        self.user = compact_user(user)

    @classmethod
    def from_token_response(cls, payload):
        expires_at = payload.get('expires_at')
        if expires_at is None and payload.get('expires_in'):
            expires_at = int(time.time()) + int(payload['expires_in'])
        return cls(
            access_token=payload['access_token'],
            refresh_token=payload.get('refresh_token'),
            expires_at=expires_at,
            user=payload.get('user') or {},
        )

    @classmethod
    def from_dict(cls, data):
        if not data or not data.get('access_token'):
            return None
        return cls(data['access_token'], data.get('refresh_token'), data.get('expires_at'), data.get('user'))

    def to_dict(self):
        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'expires_at': self.expires_at,
            'user': self.user,
        }

    def is_expired(self, now=None):
        if not self.expires_at:
            return False
        return (now or time.time()) >= int(self.expires_at)

    @property
    def user_id(self):
        return self.user.get('id')

    @property
    def email(self):
        return self.user.get('email') or ''

    @property
    def full_name(self):
        metadata = self.user.get('user_metadata') or {}
        return metadata.get('full_name') or ''


class SessionHolder:
    """Single source of truth for the current auth session."""

    def __init__(self, auth_session=None):
        self._session = auth_session
        self._listeners = []

    @property
    def session(self):
        return self._session

    @property
    def access_token(self):
        return self._session.access_token if self._session else None

    @property
    def refresh_token(self):
        return self._session.refresh_token if self._session else None

    def subscribe(self, listener):
        """Register ``listener(event, session)``; returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def on_auth_state_change(self, event, new_session):
        self._session = new_session
        for listener in list(self._listeners):
            listener(event, new_session)


class SessionUser(UserMixin):
    def __init__(self, auth_session):
        self.id = auth_session.user_id
        self.email = auth_session.email
        self.full_name = auth_session.full_name or auth_session.email


def resolve_redirect(path, auth_session, is_admin=False):
    """Return the path to redirect to, or None to let the request through."""
    if path.startswith(UNGUARDED_PREFIXES):
        return None
    if auth_session is not None and path in GUEST_ONLY_PATHS:
        return '/'
    if requires_admin(path):
        if auth_session is None or not is_admin:
            return '/admin/login'
        return None
    if auth_session is None and path not in PUBLIC_PATHS:
        return '/login'
    return None


def requires_admin(path):
    return path == '/admin' or (path.startswith('/admin/') and path != '/admin/login')


def _persist_to_cookie(event, new_session):
    if new_session is None:
        cookie_session.pop(SESSION_KEY, None)
    else:
        cookie_session[SESSION_KEY] = new_session.to_dict()


def load_session_holder():
    """Build the request's holder from the cookie, refreshing an expired token once."""
    holder = SessionHolder(AuthSession.from_dict(cookie_session.get(SESSION_KEY)))
    holder.subscribe(_persist_to_cookie)
    g.auth = holder

    current = holder.session
    if current is not None and current.is_expired():
        if not current.refresh_token:
            holder.on_auth_state_change('SIGNED_OUT', None)
            return holder
        try:
            payload = current_app.extensions['backend'].client().refresh_session(current.refresh_token)
            holder.on_auth_state_change('TOKEN_REFRESHED', AuthSession.from_token_response(payload))
        except BackendError as e:
            current_app.logger.info("Session refresh failed, signing out: %s", e.message)
            holder.on_auth_state_change('SIGNED_OUT', None)
    return holder


def get_holder():
    holder = g.get('auth')
    if holder is None:
        holder = load_session_holder()
    return holder


def get_client():
    """Backend client bound to the current user's token (or the anon key)."""
    holder = get_holder()
    return current_app.extensions['backend'].client(holder.access_token, holder.refresh_token)


def lookup_is_admin(client, user_id):
    if not user_id:
        return False
    row = client.select_one('users', 'is_admin', id=user_id)
    return bool(row and row.get('is_admin'))
