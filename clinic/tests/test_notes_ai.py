import pytest
import requests
from rest_framework.exceptions import ValidationError

from clinic.services import notes_ai

pytestmark = pytest.mark.django_db

URL = '/api/consultations/enhance-notes'


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=''):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError('no json')
        return self._payload


@pytest.fixture
def gateway(monkeypatch, settings):
    settings.AI_GATEWAY_API_KEY = 'test-key'
    calls = []
    state = {'response': FakeResponse(payload={'choices': [{'message': {'content': '  Patient has fever.  '}}]})}

    def post(url, headers=None, json=None, timeout=None):
        calls.append({'url': url, 'headers': headers, 'json': json, 'timeout': timeout})
        if isinstance(state['response'], Exception):
            raise state['response']
        return state['response']

    monkeypatch.setattr(notes_ai.requests, 'post', post)
    state['calls'] = calls
    return state


def test_enhances_notes(doctor_client, gateway, settings):
    r = doctor_client.post(URL, {'notes': 'pt hav fever'}, format='json')
    assert r.status_code == 200
    assert r.data == {'enhancedNotes': 'Patient has fever.'}
    call = gateway['calls'][0]
    assert call['headers']['Authorization'] == 'Bearer test-key'
    assert call['json']['model'] == settings.AI_GATEWAY_MODEL
    assert call['json']['messages'][0]['role'] == 'system'
    assert call['json']['messages'][1] == {'role': 'user', 'content': 'pt hav fever'}


def test_empty_notes(doctor_client, gateway):
    r = doctor_client.post(URL, {'notes': '   '}, format='json')
    assert r.status_code == 400
    assert gateway['calls'] == []


def test_staff_cannot_use_notes_cleanup(staff_client, gateway):
    assert staff_client.post(URL, {'notes': 'x'}, format='json').status_code == 403


@pytest.mark.parametrize('status,code,http', [
    (429, 'ai_rate_limited', 429),
    (402, 'ai_payment_required', 402),
    (500, 'ai_gateway_error', 500),
])
def test_gateway_errors(doctor_client, gateway, status, code, http):
    gateway['response'] = FakeResponse(status_code=status, text='upstream')
    r = doctor_client.post(URL, {'notes': 'pt hav fever'}, format='json')
    assert r.status_code == http
    assert r.data['error']['code'] == code


def test_gateway_unreachable(doctor_client, gateway):
    gateway['response'] = requests.ConnectionError('refused')
    r = doctor_client.post(URL, {'notes': 'pt hav fever'}, format='json')
    assert r.status_code == 500
    assert r.data['error']['code'] == 'ai_gateway_error'


def test_malformed_gateway_reply(doctor_client, gateway):
    gateway['response'] = FakeResponse(payload={'choices': []})
    assert doctor_client.post(URL, {'notes': 'x'}, format='json').status_code == 500


def test_missing_api_key(doctor_client, settings):
    settings.AI_GATEWAY_API_KEY = ''
    r = doctor_client.post(URL, {'notes': 'x'}, format='json')
    assert r.status_code == 500
    assert r.data['error']['message'] == 'AI gateway is not configured'


def test_empty_notes_rejected_before_gateway_config(doctor_client, settings):
    settings.AI_GATEWAY_API_KEY = ''
    r = doctor_client.post(URL, {'notes': '  '}, format='json')
    assert r.status_code == 400
    with pytest.raises(ValidationError):
        notes_ai.enhance_notes('   ')
