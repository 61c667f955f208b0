import copy
import datetime
import itertools
import time
import uuid

import pytest

from brankas import create_app
from brankas.extensions import db
from brankas.services.backend import BackendError, FlaskSessionStorage
from brankas.services.validation_service import DURATION_DAYS
from config import Config


class TestConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    BCRYPT_LOG_ROUNDS = 4
    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = 'noreply@brankaskita.test'
    BACKEND_URL = 'https://backend.test'
    BACKEND_ANON_KEY = 'anon-key'
    GEMINI_API_KEY = 'test-gemini-key'


VERIFIER_KEY = 'supabase.auth.token-code-verifier'


def _now():
    return datetime.datetime.now(datetime.timezone.utc)


class FakeClient:
    """In-memory stand-in for BackendClient, bound to one token."""

    def __init__(self, backend, access_token=None, refresh_token=None):
        self.backend = backend
        self.access_token = access_token
        self.refresh_token = refresh_token

    def _rows(self, table):
        return self.backend.tables.setdefault(table, [])

    @staticmethod
    def _matches(row, filters):
        return all(str(row.get(key)) == str(value) for key, value in filters.items())

    def select(self, table, columns='*', order=None, limit=None, **filters):
        self.backend.maybe_fail(f'select:{table}')
        rows = [copy.deepcopy(r) for r in self._rows(table) if self._matches(r, filters)]
        if order:
            column, _, direction = order.partition('.')
            rows.sort(key=lambda r: str(r.get(column) or ''), reverse=direction == 'desc')
        if limit:
            rows = rows[:limit]
        return rows

    def select_one(self, table, columns='*', **filters):
        rows = self.select(table, columns, limit=1, **filters)
        return rows[0] if rows else None

    def insert(self, table, row):
        self.backend.maybe_fail(f'insert:{table}')
        row = dict(row)
        row.setdefault('id', str(next(self.backend.ids)))
        row.setdefault('created_at', _now().isoformat())
        self._rows(table).append(row)
        return copy.deepcopy(row)

    def update(self, table, values, **filters):
        self.backend.maybe_fail(f'update:{table}')
        updated = []
        for row in self._rows(table):
            if self._matches(row, filters):
                row.update(values)
                updated.append(copy.deepcopy(row))
        return updated

    def rpc(self, name, params=None, idempotency_key=None):
        self.backend.rpc_calls.append((name, params, idempotency_key))
        self.backend.maybe_fail(f'rpc:{name}')
        handler = getattr(self.backend, f'_rpc_{name}', None)
        if handler is not None:
            return handler(**(params or {}))
        return copy.deepcopy(self.backend.rpc_results.get(name))

    # --- auth ---
    def sign_in_with_password(self, email, password):
        account = self.backend.accounts.get(email)
        if not account or account['password'] != password:
            raise BackendError('Invalid login credentials', status=400)
        return self.backend.token_payload(account['user'])

    def sign_up(self, email, password, full_name, redirect_to=None):
        if email in self.backend.accounts:
            raise BackendError('User already registered', status=400)
        self.backend.signups.append({'email': email, 'full_name': full_name, 'redirect_to': redirect_to})
        return {'id': str(uuid.uuid4()), 'email': email}

    def refresh_session(self, refresh_token):
        for account in self.backend.accounts.values():
            if f"refresh-{account['user']['id']}" == refresh_token:
                return self.backend.token_payload(account['user'])
        raise BackendError('Invalid Refresh Token', status=400)

    def exchange_code_for_session(self, auth_code):
        storage = FlaskSessionStorage()
        code_verifier = storage.get_item(VERIFIER_KEY)
        storage.remove_item(VERIFIER_KEY)
        self.backend.exchanges.append((auth_code, code_verifier))
        user = self.backend.auth_codes.get(auth_code)
        if user is None:
            raise BackendError('invalid flow state', status=400)
        return self.backend.token_payload(user)

    def get_user(self):
        for account in self.backend.accounts.values():
            if f"token-{account['user']['id']}" == self.access_token:
                return copy.deepcopy(account['user'])
        raise BackendError('invalid JWT', status=401)

    def update_user(self, attributes):
        user = self.get_user()
        account = self.backend.accounts[user['email']]
        if 'password' in attributes:
            account['password'] = attributes['password']
        if 'data' in attributes:
            account['user'].setdefault('user_metadata', {}).update(attributes['data'])
        return copy.deepcopy(account['user'])

    def reset_password_for_email(self, email, redirect_to):
        self.backend.reset_requests.append((email, redirect_to))

    def sign_out(self):
        self.backend.sign_outs.append(self.access_token)

    def sign_in_with_oauth(self, provider, redirect_to):
        FlaskSessionStorage().set_item(VERIFIER_KEY, f"verifier-{provider}")
        return f"https://backend.test/auth/v1/authorize?provider={provider}"


class FakeBackend:
    """Replaces the ``backend`` extension; holds tables and remote procedures."""

    def __init__(self):
        self.tables = {'users': [], 'boxes': [], 'rentals': [], 'payments': [], 'notifications': [], 'weekly_reports': []}
        self.accounts = {}
        self.auth_codes = {}
        self.rpc_results = {}
        self.rpc_calls = []
        self.signups = []
        self.exchanges = []
        self.reset_requests = []
        self.sign_outs = []
        self.failures = {}
        self.ids = itertools.count(1)

    def client(self, access_token=None, refresh_token=None):
        return FakeClient(self, access_token, refresh_token)

    def maybe_fail(self, operation):
        error = self.failures.get(operation)
        if error is not None:
            raise error

    def add_account(self, email, password='secret123', full_name='Test User', is_admin=False, with_row=True):
        user = {'id': str(uuid.uuid4()), 'email': email, 'user_metadata': {'full_name': full_name}}
        self.accounts[email] = {'password': password, 'user': user}
        if with_row:
            self.tables['users'].append({'id': user['id'], 'email': email, 'full_name': full_name,
                                         'is_admin': is_admin, 'created_at': _now().isoformat()})
        return user

    def add_box(self, box_code, status='available'):
        box = {'id': str(next(self.ids)), 'box_code': box_code, 'status': status}
        self.tables['boxes'].append(box)
        return box

    def add_rental(self, user, box, **values):
        rental = {
            'id': str(next(self.ids)), 'user_id': user['id'], 'box_id': box['id'], 'status': 'pending',
            'price': 5.99, 'payment_status': 'pending', 'pin_code': '', 'items_type': 'Documents',
            'rent_duration': 'one_day', 'barcode': str(uuid.uuid4()), 'created_at': _now().isoformat(),
            'start_date': None, 'end_date': None,
        }
        rental.update(values)
        self.tables['rentals'].append(rental)
        return rental

    def row(self, table, row_id):
        return next((r for r in self.tables[table] if str(r['id']) == str(row_id)), None)

    def token_payload(self, user):
        return {
            'access_token': f"token-{user['id']}",
            'refresh_token': f"refresh-{user['id']}",
            'expires_in': 3600,
            'user': copy.deepcopy(user),
        }

    # --- remote procedures ---
    def _rpc_handle_successful_payment(self, rental_id_input, box_id_input, payment_method_input):
        rental = self.row('rentals', rental_id_input)
        start = _now()
        rental.update({
            'status': 'active', 'payment_status': 'paid', 'start_date': start.isoformat(),
            'end_date': (start + datetime.timedelta(days=DURATION_DAYS[rental['rent_duration']])).isoformat(),
        })
        self.row('boxes', box_id_input)['status'] = 'rented'
        self.tables['payments'].append({'id': str(next(self.ids)), 'rental_id': rental['id'], 'amount': rental['price'],
                                        'method': payment_method_input, 'payment_date': start.isoformat()})

    def _rpc_handle_rental_extension(self, rental_id_input, duration_to_add, payment_method_input, extension_price):
        rental = self.row('rentals', rental_id_input)
        end = datetime.datetime.fromisoformat(rental['end_date'])
        rental['end_date'] = (end + datetime.timedelta(days=DURATION_DAYS[duration_to_add])).isoformat()
        self.tables['payments'].append({'id': str(next(self.ids)), 'rental_id': rental['id'], 'amount': extension_price,
                                        'method': payment_method_input, 'payment_date': _now().isoformat()})

    def _rpc_admin_end_rental(self, rental_id_input):
        rental = self.row('rentals', rental_id_input)
        rental['status'] = 'completed'
        self.row('boxes', rental['box_id'])['status'] = 'available'

    def _rpc_delete_user_and_data(self, user_id_to_delete):
        self.tables['users'] = [u for u in self.tables['users'] if u['id'] != user_id_to_delete]
        self.tables['rentals'] = [r for r in self.tables['rentals'] if r['user_id'] != user_id_to_delete]


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def app(fake_backend):
    app = create_app(TestConfig)
    app.extensions['backend'] = fake_backend
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def login_as(test_client, backend, user, expires_at=None):
    """Put a signed-in auth session for ``user`` into the test client's cookie."""
    payload = backend.token_payload(user)
    with test_client.session_transaction() as sess:
        sess['auth_session'] = {
            'access_token': payload['access_token'],
            'refresh_token': payload['refresh_token'],
            'expires_at': expires_at or int(time.time()) + 3600,
            'user': payload['user'],
        }


@pytest.fixture
def customer(fake_backend):
    return fake_backend.add_account('budi@example.com', full_name='Budi Santoso')


@pytest.fixture
def admin_user(fake_backend):
    return fake_backend.add_account('admin@example.com', full_name='Admin', is_admin=True)


@pytest.fixture
def logged_in(client, fake_backend, customer):
    login_as(client, fake_backend, customer)
    return client
