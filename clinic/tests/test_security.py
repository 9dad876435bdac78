import pytest
from rest_framework.test import APIClient

from clinic.models import AuditEvent, User

pytestmark = pytest.mark.django_db


def login(client, username, password):
    return client.post('/api/auth/login', {'username': username, 'password': password}, format='json')


def test_login_returns_jwt_and_legacy_token(admin_user):
    r = login(APIClient(), 'admin1', 'P@ssw0rd1')
    assert r.status_code == 200
    assert r.data['token']
    assert r.data['jwt_access'] and r.data['jwt_refresh']
    assert r.data['user']['tenantId'] == admin_user.tenant_id
    assert r.data['subscription']['hasAccess'] is True


def test_failed_login_is_audited(admin_user):
    r = login(APIClient(), 'admin1', 'wrong')
    assert r.status_code == 400
    assert AuditEvent.objects.filter(action='login', detail__result='fail').exists()


def test_no_role_bypass_in_login(staff_user):
    client = APIClient()
    r = client.post('/api/auth/login', {'username': 'staff1', 'password': 'P@ssw0rd1', 'role': 'super_admin'},
                    format='json')
    assert r.status_code == 200
    assert r.data['role'] == 'staff'
    staff_user.refresh_from_db()
    assert staff_user.role == 'staff'


def test_token_and_jwt_both_authenticate(staff_user, patient):
    data = login(APIClient(), 'staff1', 'P@ssw0rd1').data
    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Token {data['token']}")
    assert client.get('/api/patients').status_code == 200
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {data['jwt_access']}")
    assert client.get('/api/patients').status_code == 200


def test_anonymous_is_rejected():
    r = APIClient().get('/api/patients')
    assert r.status_code in (401, 403)
    assert r.data['ok'] is False


def test_refresh_and_logout(staff_user):
    data = login(APIClient(), 'staff1', 'P@ssw0rd1').data
    r = APIClient().post('/api/auth/refresh', {'refresh': data['jwt_refresh']}, format='json')
    assert r.status_code == 200
    assert r.data['jwt_access']

    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Token {data['token']}")
    r = client.post('/api/auth/logout', {'refresh': data['jwt_refresh']}, format='json')
    assert r.status_code == 200
    r = APIClient().post('/api/auth/refresh', {'refresh': data['jwt_refresh']}, format='json')
    assert r.status_code == 401


def test_login_is_throttled(admin_user):
    client = APIClient()
    statuses = [login(client, 'admin1', 'wrong').status_code for _ in range(11)]
    assert statuses[-1] == 429


def test_user_without_clinic_is_refused(db):
    loner = User.objects.create_user(username='loner', password='P@ssw0rd1', role='staff')
    client = APIClient()
    client.force_authenticate(loner)
    r = client.get('/api/patients')
    assert r.status_code == 403


def test_super_admin_sees_every_clinic(super_admin, tenant, other_tenant):
    from clinic.tests.conftest import make_patient
    make_patient(tenant)
    make_patient(other_tenant)
    client = APIClient()
    client.force_authenticate(super_admin)
    assert client.get('/api/patients').data['total'] == 2


def test_healthz():
    r = APIClient().get('/healthz')
    assert r.status_code == 200
    assert r.json()['db'] is True


def test_refresh_with_garbage_token_is_401(db):
    r = APIClient().post('/api/auth/refresh', {'refresh': 'not-a-token'}, format='json')
    assert r.status_code == 401
    assert r.data['error']['code'] == 'token_not_valid'


def test_subdomain_check_is_throttled(db):
    client = APIClient()
    statuses = [
        client.post('/api/tenants/check-subdomain', {'subdomain': 'klinik-x'}, format='json').status_code
        for _ in range(21)
    ]
    assert statuses[:20] == [200] * 20
    assert statuses[-1] == 429


def test_scoped_limits_are_set_on_views():
    from clinic.auth_views import login_view
    from clinic.views.consultations import enhance_consultation_notes
    from clinic.views.subscription import check_subdomain_view, create_checkout_session

    assert login_view.cls.throttle_scope == 'login'
    assert check_subdomain_view.cls.throttle_scope == 'signup'
    assert create_checkout_session.cls.throttle_scope == 'signup'
    assert enhance_consultation_notes.cls.throttle_scope == 'ai_notes'
