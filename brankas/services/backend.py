"""
Access to the hosted backend through the ``supabase`` client library.

``BackendClient`` wraps one supabase client bound to a user's tokens (or the
anon key) and hands back plain dicts. Library errors are re-raised as
``BackendError`` carrying the backend's message unchanged. There is no retry
and no caching.
"""
from functools import wraps
from typing import Any, Dict, List, Optional

import httpx
from flask import session as cookie_session
from postgrest.exceptions import APIError
from supabase import AuthError, create_client
from supabase.client import ClientOptions

AUTH_STORAGE_KEY = 'backend_auth'


class BackendError(Exception):
    """Error reported by the hosted backend. The message is kept verbatim."""

    def __init__(self, message, code=None, status=None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


def to_backend_error(exc) -> BackendError:
    if isinstance(exc, APIError):
        return BackendError(exc.message or str(exc), code=exc.code)
    if isinstance(exc, AuthError):
        return BackendError(exc.message, code=getattr(exc, 'code', None), status=getattr(exc, 'status', None))
    return BackendError(f"Could not reach the backend: {exc}")


def backend_call(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except (APIError, AuthError, httpx.HTTPError) as e:
            raise to_backend_error(e) from e
    return decorated_function


class FlaskSessionStorage:
    """
    Auth-client storage kept in the signed session cookie.
    Sessions are not persisted by the client, so this only ever holds the
    PKCE code verifier between the redirect to the provider and the callback.
    """

    def get_item(self, key):
        return (cookie_session.get(AUTH_STORAGE_KEY) or {}).get(key)

    def set_item(self, key, value):
        items = dict(cookie_session.get(AUTH_STORAGE_KEY) or {})
        items[key] = value
        cookie_session[AUTH_STORAGE_KEY] = items

    def remove_item(self, key):
        items = dict(cookie_session.get(AUTH_STORAGE_KEY) or {})
        items.pop(key, None)
        if items:
            cookie_session[AUTH_STORAGE_KEY] = items
        else:
            cookie_session.pop(AUTH_STORAGE_KEY, None)


def user_to_dict(user) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {
        'id': user.id,
        'email': user.email or '',
        'user_metadata': dict(user.user_metadata or {}),
    }


def session_to_dict(session) -> Dict[str, Any]:
    if session is None:
        raise BackendError('The backend did not return a session.')
    return {
        'access_token': session.access_token,
        'refresh_token': session.refresh_token,
        'expires_in': session.expires_in,
        'expires_at': session.expires_at,
        'user': user_to_dict(session.user),
    }


class BackendClient:
    """Table, procedure and auth calls bound to one access token (or the anon key)."""

    def __init__(self, url: str, key: str, access_token: Optional[str] = None,
                 refresh_token: Optional[str] = None, timeout: int = 10):
        self.url = url
        self.key = key
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.timeout = timeout
        self._supabase = None

    def connect(self, headers: Optional[Dict[str, str]] = None):
        options = ClientOptions(
            auto_refresh_token=False,
            persist_session=False,
            storage=FlaskSessionStorage(),
            flow_type='pkce',
            postgrest_client_timeout=self.timeout,
        )
        if headers:
            options.headers.update(headers)
        client = create_client(self.url, self.key, options=options)
        if self.access_token:
            client.postgrest.auth(self.access_token)
        return client

    @property
    def supabase(self):
        if self._supabase is None:
            self._supabase = self.connect()
        return self._supabase

    # --- tables ---
    @backend_call
    def select(self, table: str, columns: str = '*', order: Optional[str] = None,
               limit: Optional[int] = None, **filters) -> List[Dict[str, Any]]:
        query = self.supabase.table(table).select(columns)
        for column, value in filters.items():
            query = query.eq(column, value)
        if order:
            column, _, direction = order.partition('.')
            query = query.order(column, desc=direction == 'desc')
        if limit:
            query = query.limit(limit)
        return query.execute().data or []

    def select_one(self, table: str, columns: str = '*', **filters) -> Optional[Dict[str, Any]]:
        rows = self.select(table, columns, limit=1, **filters)
        return rows[0] if rows else None

    @backend_call
    def insert(self, table: str, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        rows = self.supabase.table(table).insert(row).execute().data
        return rows[0] if rows else None

    @backend_call
    def update(self, table: str, values: Dict[str, Any], **filters) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError('update() requires at least one filter')
        query = self.supabase.table(table).update(values)
        for column, value in filters.items():
            query = query.eq(column, value)
        return query.execute().data or []

    # --- remote procedures ---
    @backend_call
    def rpc(self, name: str, params: Optional[Dict[str, Any]] = None, idempotency_key: Optional[str] = None):
        client = self.connect({'Idempotency-Key': idempotency_key}) if idempotency_key else self.supabase
        return client.rpc(name, params or {}).execute().data

    # --- auth ---
    @backend_call
    def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        response = self.supabase.auth.sign_in_with_password({'email': email, 'password': password})
        return session_to_dict(response.session)

    @backend_call
    def sign_up(self, email: str, password: str, full_name: str, redirect_to: Optional[str] = None) -> Dict[str, Any]:
        options = {'data': {'full_name': full_name}}
        if redirect_to:
            options['email_redirect_to'] = redirect_to
        response = self.supabase.auth.sign_up({'email': email, 'password': password, 'options': options})
        return user_to_dict(response.user)

    @backend_call
    def refresh_session(self, refresh_token: str) -> Dict[str, Any]:
        return session_to_dict(self.supabase.auth.refresh_session(refresh_token).session)

    @backend_call
    def exchange_code_for_session(self, auth_code: str) -> Dict[str, Any]:
        # The code verifier is read back from FlaskSessionStorage
        response = self.supabase.auth.exchange_code_for_session({'auth_code': auth_code})
        return session_to_dict(response.session)

    @backend_call
    def get_user(self) -> Dict[str, Any]:
        response = self.supabase.auth.get_user(self.access_token)
        if response is None or response.user is None:
            raise BackendError('User not found.', status=401)
        return user_to_dict(response.user)

    @backend_call
    def update_user(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        auth_client = self.supabase.auth
        auth_client.set_session(self.access_token, self.refresh_token or '')
        return user_to_dict(auth_client.update_user(attributes).user)

    @backend_call
    def reset_password_for_email(self, email: str, redirect_to: str):
        self.supabase.auth.reset_password_for_email(email, {'redirect_to': redirect_to})

    @backend_call
    def sign_out(self):
        if self.access_token:
            self.supabase.auth.admin.sign_out(self.access_token)

    @backend_call
    def sign_in_with_oauth(self, provider: str, redirect_to: str) -> str:
        """Provider authorize URL; the PKCE verifier lands in FlaskSessionStorage."""
        response = self.supabase.auth.sign_in_with_oauth({'provider': provider, 'options': {'redirect_to': redirect_to}})
        return response.url


class Backend:
    """Flask extension that hands out clients configured from the app config."""

    def __init__(self, app=None):
        self.url = ''
        self.key = ''
        self.timeout = 10
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.url = app.config.get('BACKEND_URL', '')
        self.key = app.config.get('BACKEND_ANON_KEY', '')
        self.timeout = app.config.get('BACKEND_TIMEOUT', 10)
        app.extensions['backend'] = self

    def client(self, access_token: Optional[str] = None, refresh_token: Optional[str] = None) -> BackendClient:
        return BackendClient(self.url, self.key, access_token=access_token,
                             refresh_token=refresh_token, timeout=self.timeout)
