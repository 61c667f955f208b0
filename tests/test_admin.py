import pytest

from brankas.routes import admin as admin_routes
from brankas.routes import api as api_routes
from brankas.services.assistant_service import AssistantError
from brankas.services.backend import BackendError
from brankas.session import SESSION_KEY
from tests.conftest import login_as


@pytest.fixture
def admin_client(client, fake_backend, admin_user):
    login_as(client, fake_backend, admin_user)
    return client


def test_dashboard_shows_summaries(admin_client, fake_backend):
    fake_backend.rpc_results.update({
        'get_revenue_summary': [{'last_7_days_revenue': 120.5, 'last_30_days_revenue': 480}],
        'get_box_summary': [{'total_boxes': 24, 'rented_boxes': 9}],
        'get_weekly_activity': [{'day': 'Mon', 'count': 3}, {'day': 'Tue', 'count': 6}],
    })
    resp = admin_client.get('/admin/dashboard')

    assert resp.status_code == 200
    assert b'$120.50' in resp.data
    assert b'$480.00' in resp.data
    assert b'24' in resp.data
    assert b'height: 50%' in resp.data
    assert b'height: 100%' in resp.data


def test_any_failed_query_aborts_the_page(admin_client, fake_backend):
    fake_backend.failures['rpc:get_box_summary'] = BackendError('permission denied')
    resp = admin_client.get('/admin/dashboard')
    assert b'Failed to load dashboard data.' in resp.data
    assert b'permission denied' not in resp.data


def test_customers_signup_range(admin_client, fake_backend):
    fake_backend.rpc_results['get_all_customers'] = [
        {'id': 'c1', 'full_name': 'Siti', 'email': 'siti@example.com', 'created_at': '2024-05-01T10:00:00Z'},
    ]
    fake_backend.rpc_results['get_daily_signups'] = []

    admin_client.get('/admin/customers?range=30')
    admin_client.get('/admin/customers?range=90')

    ranges = [params['days_range'] for name, params, _ in fake_backend.rpc_calls if name == 'get_daily_signups']
    assert ranges == [30, 7]


def test_delete_customer(admin_client, fake_backend, customer):
    resp = admin_client.post('/admin/customers/delete', data={'target_id': customer['id']})
    assert resp.status_code == 302
    assert ('delete_user_and_data', {'user_id_to_delete': customer['id']}, None) in fake_backend.rpc_calls
    assert fake_backend.row('users', customer['id']) is None


def test_payments_page(admin_client, fake_backend):
    fake_backend.rpc_results.update({
        'get_payment_summary': [{'total_revenue': 35.98, 'total_transactions': 2, 'average_transaction_value': 17.99}],
        'get_all_payments': [{'payment_id': 'p1', 'payment_date': '2024-05-02T08:00:00Z', 'user_email': 'siti@example.com',
                              'amount': 29.99, 'method': 'credit_card', 'rental_id': 'r1'}],
        'get_payment_method_distribution': [{'method': 'credit_card', 'count': 2}],
    })
    resp = admin_client.get('/admin/payments')
    assert b'$35.98' in resp.data
    assert b'siti@example.com' in resp.data
    assert b'Credit Card' in resp.data


def test_create_box_normalises_code(admin_client, fake_backend):
    admin_client.post('/admin/boxes/create', data={'box_code': '  c-07 '})
    assert fake_backend.tables['boxes'][-1]['box_code'] == 'C-07'
    assert fake_backend.tables['boxes'][-1]['status'] == 'available'


def test_create_box_rejects_empty_code(admin_client, fake_backend):
    resp = admin_client.post('/admin/boxes/create', data={'box_code': '   '}, follow_redirects=True)
    assert b'Box Code cannot be empty.' in resp.data
    assert fake_backend.tables['boxes'] == []


def test_update_box_status(admin_client, fake_backend):
    box = fake_backend.add_box('D-01')
    admin_client.post('/admin/boxes/status', data={'box_id': box['id'], 'status': 'unavailable'})
    assert fake_backend.row('boxes', box['id'])['status'] == 'unavailable'


def test_end_rental(admin_client, fake_backend, customer):
    box = fake_backend.add_box('D-02', status='rented')
    rental = fake_backend.add_rental(customer, box, status='active', payment_status='paid')

    admin_client.post('/admin/rentals/end', data={'target_id': rental['id']})

    assert fake_backend.row('rentals', rental['id'])['status'] == 'completed'
    assert fake_backend.row('boxes', box['id'])['status'] == 'available'


class TestReport:
    REPORT = {'id': 'w1', 'start_date': '2024-05-06', 'end_date': '2024-05-12', 'total_revenue': 250,
              'new_rental_revenue': 200, 'extension_revenue': 50, 'total_transactions': 12,
              'new_rentals': 9, 'busiest_day': 'Saturday', 'new_user_signups': 4}

    @pytest.fixture(autouse=True)
    def report_data(self, fake_backend):
        fake_backend.rpc_results['get_available_reports'] = [{'id': 'w1', 'start_date': '2024-05-06', 'end_date': '2024-05-12'}]
        fake_backend.tables['weekly_reports'].append(dict(self.REPORT))

    def test_report_page_hands_data_to_the_chat(self, admin_client):
        resp = admin_client.get('/admin/report')

        assert resp.status_code == 200
        assert b'$250.00' in resp.data
        assert b'Saturday' in resp.data
        assert b'"busiest_day"' in resp.data
        assert admin_routes.SUMMARY_PROMPT.encode() in resp.data
        assert b'js/report_chat.js' in resp.data

    def test_unknown_report(self, admin_client):
        resp = admin_client.get('/admin/report?report_id=missing')
        assert b'Report not found.' in resp.data

    def test_no_reports_yet(self, admin_client, fake_backend):
        fake_backend.rpc_results['get_available_reports'] = []
        resp = admin_client.get('/admin/report')
        assert b'No weekly reports have been generated yet.' in resp.data

    def test_long_chat_keeps_the_session_cookie_small(self, client, fake_backend, admin_user, monkeypatch):
        account = fake_backend.accounts['admin@example.com']['user']
        account['app_metadata'] = {'provider': 'email', 'providers': ['email', 'google']}
        account['identities'] = [{'identity_id': str(n) * 36, 'identity_data': {'sub': 'x' * 200}} for n in range(3)]

        login = client.post('/admin/login', data={'email': 'admin@example.com', 'password': 'secret123'})
        sizes = [len(cookie) for cookie in login.headers.getlist('Set-Cookie')]

        turn = iter(range(100))
        monkeypatch.setattr(api_routes, 'ask_report_assistant',
                            lambda report, messages: f"Answer {next(turn)}: " + 'revenue grew on weekends. ' * 28)

        transcript = []
        for n in range(8):
            transcript.append({'role': 'user', 'content': f'Question {n} about the weekend numbers?'})
            resp = client.post('/api/report-ai', json={'reportData': self.REPORT, 'messages': transcript})
            assert resp.status_code == 200
            transcript.append({'role': 'model', 'content': resp.get_json()['reply']})
            sizes += [len(cookie) for cookie in resp.headers.getlist('Set-Cookie')]

        assert sizes
        assert max(sizes) <= 4093
        with client.session_transaction() as sess:
            assert set(sess[SESSION_KEY]['user']) == {'id', 'email', 'user_metadata'}
            assert sess[SESSION_KEY]['user']['id'] == admin_user['id']

    def test_failed_reply_is_a_json_error(self, admin_client, monkeypatch):
        def broken(report, messages):
            raise AssistantError('quota exceeded')
        monkeypatch.setattr(api_routes, 'ask_report_assistant', broken)

        resp = admin_client.post('/api/report-ai', json={'reportData': self.REPORT,
                                                         'messages': [{'role': 'user', 'content': 'Hello'}]})

        assert resp.status_code == 500
        assert resp.get_json() == {'error': 'quota exceeded'}
