"""
HTTP surface of the check-in service, exercised with the Flask test client.
"""
from datetime import timedelta

from werkzeug.security import check_password_hash

from conftest import ADMIN_PASSWORD, CRON_SECRET, SCHOOL_MORNING, eastern
from models import db


def test_check_in_and_duplicate(client):
    response = client.post('/api/checkin', json={'userId': '000001'})
    assert response.status_code == 200
    data = response.get_json()
    assert data['userId'] == '000001'
    assert data['checkedInAt'] == SCHOOL_MORNING.isoformat()

    response = client.post('/api/checkin', json={'userId': '000001'})
    assert response.status_code == 409
    assert response.get_json()['message'] == 'User is already checked in'


def test_check_in_requires_user_id(client):
    assert client.post('/api/checkin', json={}).status_code == 400
    assert client.post('/api/checkin', json={'userId': '   '}).status_code == 400
    assert client.post('/api/checkin', data='not json').status_code == 400
    assert client.post('/api/checkin', json={'userId': True}).status_code == 400


def test_numeric_user_id_is_accepted(client):
    response = client.post('/api/checkin', json={'userId': 123456})
    assert response.status_code == 200
    assert response.get_json()['userId'] == '123456'


def test_check_out_reports_duration(client, clock):
    client.post('/api/checkin', json={'userId': '000001'})
    clock.advance(minutes=15, seconds=30)

    response = client.post('/api/checkin/checkout', json={'userId': '000001'})
    assert response.status_code == 200
    assert response.get_json()['duration'] == 930000

    response = client.post('/api/checkin/checkout', json={'userId': '000001'})
    assert response.status_code == 404
    assert response.get_json()['message'] == 'User is not checked in'


def test_check_out_unknown_member(client):
    assert client.post('/api/checkin/checkout', json={'userId': '000002'}).status_code == 404


def test_status_count_and_active(client, clock):
    client.post('/api/checkin', json={'userId': '123456'})
    clock.advance(minutes=1)
    client.post('/api/checkin', json={'userId': '654321'})

    status = client.get('/api/checkin/status/123456').get_json()
    assert status == {'isCheckedIn': True, 'checkedInAt': SCHOOL_MORNING.isoformat()}
    assert client.get('/api/checkin/status/000000').get_json() == {'isCheckedIn': False, 'checkedInAt': None}

    assert client.get('/api/checkin/count').get_json() == {'count': 2}

    active = client.get('/api/checkin/active').get_json()
    assert [a['userId'] for a in active] == ['654321', '123456']
    assert active[0]['maskedId'] == '****21'


def test_admin_routes_require_login(client):
    assert client.post('/api/checkin/admin/force-checkout', json={'userId': '000001'}).status_code == 401
    assert client.post('/api/checkin/logout-all').status_code == 401
    assert client.get('/api/checkin/admin/total-hours/000001').status_code == 401
    assert client.get('/api/checkin/admin/session-history/000001').status_code == 401
    assert client.get('/api/checkin/admin/all-sessions').status_code == 401
    assert client.post('/api/checkin/admin/auto-logout').status_code == 401


def test_admin_login_and_logout(client):
    assert client.post('/api/admin/auth', json={'password': 'wrong'}).status_code == 401
    assert client.post('/api/admin/auth', json={'password': ADMIN_PASSWORD}).status_code == 200
    assert client.get('/api/checkin/admin/all-sessions').status_code == 200

    assert client.delete('/api/admin/auth').status_code == 200
    assert client.get('/api/checkin/admin/all-sessions').status_code == 401


def test_admin_force_checkout(admin_client, clock):
    admin_client.post('/api/checkin', json={'userId': '000001'})
    clock.advance(minutes=5)

    response = admin_client.post('/api/checkin/admin/force-checkout', json={'userId': '000001'})
    assert response.status_code == 200
    assert response.get_json()['userId'] == '000001'
    assert admin_client.post('/api/checkin/admin/force-checkout', json={'userId': '000001'}).status_code == 404

    history = admin_client.get('/api/checkin/admin/session-history/000001').get_json()
    assert len(history) == 1
    assert history[0]['forced'] is True
    assert history[0]['actor'] == 'admin'
    assert history[0]['durationMs'] == 300000


def test_logout_all(admin_client, clock):
    for user_id in ('000001', '000002', '000003'):
        admin_client.post('/api/checkin', json={'userId': user_id})
    clock.advance(hours=1)

    response = admin_client.post('/api/checkin/logout-all')
    assert response.get_json()['count'] == 3
    assert admin_client.get('/api/checkin/count').get_json() == {'count': 0}
    assert len(admin_client.get('/api/checkin/admin/all-sessions').get_json()) == 3


def test_total_hours(admin_client, clock):
    admin_client.post('/api/checkin', json={'userId': '000001'})
    clock.advance(minutes=30)
    admin_client.post('/api/checkin/checkout', json={'userId': '000001'})
    clock.advance(minutes=30)
    admin_client.post('/api/checkin', json={'userId': '000001'})
    clock.advance(hours=1)
    admin_client.post('/api/checkin/checkout', json={'userId': '000001'})

    data = admin_client.get('/api/checkin/admin/total-hours/000001').get_json()
    assert data['totalSessions'] == 2
    assert data['totalMilliseconds'] == 5400000
    assert data['totalHours'] == '1h 30m'


def test_auto_logout_info(client, clock):
    clock.now = eastern(12, 0)
    info = client.get('/api/checkin/admin/auto-logout').get_json()
    assert info['currentTime'] == '12:00'
    assert info['nextLogoutTime'] == '12:15'
    assert info['isLogoutTime'] is False


def test_auto_logout_outside_schedule(client, clock):
    client.post('/api/checkin', json={'userId': '000001'})
    clock.now = eastern(12, 0)

    response = client.post('/api/checkin/admin/auto-logout', headers={'X-Cron-Secret': CRON_SECRET})
    assert response.status_code == 200
    assert response.get_json()['fired'] is False
    assert client.get('/api/checkin/count').get_json() == {'count': 1}


def test_auto_logout_at_bell_time(client, clock):
    client.post('/api/checkin', json={'userId': '000001'})
    client.post('/api/checkin', json={'userId': '000002'})
    clock.now = eastern(12, 15, 20)

    response = client.post('/api/checkin/admin/auto-logout', headers={'X-Cron-Secret': CRON_SECRET})
    data = response.get_json()
    assert data['fired'] is True
    assert data['count'] == 2
    assert client.get('/api/checkin/count').get_json() == {'count': 0}

    again = client.post('/api/checkin/admin/auto-logout', headers={'X-Cron-Secret': CRON_SECRET})
    assert again.status_code == 200
    assert again.get_json()['fired'] is False


def test_auto_logout_rejects_wrong_cron_secret(client):
    response = client.post('/api/checkin/admin/auto-logout', headers={'X-Cron-Secret': 'nope'})
    assert response.status_code == 401


def test_storage_fault_returns_500(sql_app):
    client = sql_app.test_client()
    db.drop_all()

    response = client.get('/api/checkin/count')
    assert response.status_code == 500
    assert 'error' in response.get_json()

    response = client.post('/api/checkin', json={'userId': '000001'})
    assert response.status_code == 500


def test_checkin_after_forced_sweep_starts_fresh(client, clock):
    client.post('/api/checkin', json={'userId': '000001'})
    clock.now = eastern(14, 30)
    with client.session_transaction() as sess:
        sess['is_admin'] = True
    client.post('/api/checkin/admin/auto-logout')

    clock.advance(minutes=10)
    response = client.post('/api/checkin', json={'userId': '000001'})
    assert response.status_code == 200
    assert response.get_json()['checkedInAt'] == (eastern(14, 30) + timedelta(minutes=10)).isoformat()


def test_admin_login_checks_the_password_hash(app):
    client = app.test_client()
    assert check_password_hash(app.config['ADMIN_PASSWORD_HASH'], ADMIN_PASSWORD)
    assert client.post('/api/admin/auth', json={'password': 12345}).status_code == 401
    assert client.post('/api/admin/auth', json={}).status_code == 401

    app.config['ADMIN_PASSWORD_HASH'] = ''
    assert client.post('/api/admin/auth', json={'password': ADMIN_PASSWORD}).status_code == 401


def test_hash_password_command(app):
    result = app.test_cli_runner().invoke(args=['hash-password', 'bell-schedule'])
    assert result.exit_code == 0
    password_hash = result.output.strip()
    assert password_hash != 'bell-schedule'
    assert check_password_hash(password_hash, 'bell-schedule')
