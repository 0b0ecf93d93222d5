import io
from datetime import datetime

import pytest
from openpyxl import Workbook

from attendance_engine import create_app
from attendance_engine.errors import PersistenceError


@pytest.fixture
def app(tmp_path, repository):
    return create_app({'TESTING': True, 'UPLOAD_FOLDER': str(tmp_path)}, repository=repository)


@pytest.fixture
def client(app):
    return app.test_client()


def _entry(token='1001', date_iso='2024-03-04', times=('08:11', '17:00')):
    return {
        'employeeToken': token,
        'dateISO': date_iso,
        'day': int(date_iso[-2:]),
        'allTimes': list(times),
        'sourceFiles': ['log.xlsx'],
    }


def test_evaluate_returns_per_day_and_per_employee(client):
    response = client.post('/api/attendance/evaluate', json={'entries': [_entry()]})
    assert response.status_code == 200
    body = response.get_json()
    assert body['perDay'][0]['employeeId'] == 'emp-3'
    assert body['perDay'][0]['lateMinutes'] == 1
    assert body['perEmployee'][0]['lateDays'] == 1
    assert 'sessionId' not in body


def test_evaluate_accepts_punch_objects(client):
    entry = _entry(times=())
    entry['punches'] = [
        {'time': '08:00', 'minuteOfDay': 480, 'source': 'original', 'files': ['a.xlsx']},
        {'time': '17:00'},
    ]
    body = client.post('/api/attendance/evaluate', json={'entries': [entry]}).get_json()
    assert body['perDay'][0]['allTimes'] == ['08:00', '17:00']
    assert body['perDay'][0]['sourceFiles'] == ['a.xlsx', 'log.xlsx']


def test_invalid_payload_lists_every_bad_field(client):
    bad = _entry(date_iso='2024-13-40', times=('8 am',))
    bad['day'] = 40
    bad['punches'] = [{'minuteOfDay': 2000}]
    response = client.post('/api/attendance/evaluate', json={'entries': [bad, {'dateISO': '2024-03-04'}]})

    assert response.status_code == 400
    body = response.get_json()
    fields = {f['field'] for f in body['fields']}
    assert {
        'entries[0].dateISO',
        'entries[0].day',
        'entries[0].allTimes[0]',
        'entries[0].punches[0].minuteOfDay',
        'entries[1].employeeToken',
    } <= fields


def test_missing_entries_is_rejected(client):
    response = client.post('/api/attendance/evaluate', data='nope', content_type='text/plain')
    assert response.status_code == 400
    assert response.get_json()['fields'][0]['field'] == 'body'


def test_persistence_failure_is_503(client, repository):
    def broken(*args, **kwargs):
        raise PersistenceError('database down')

    repository.fetch_identity_mappings = broken
    response = client.post('/api/attendance/evaluate', json={'entries': [_entry()]})
    assert response.status_code == 503


def test_session_round_trip_and_manual_mapping(client):
    body = client.post('/api/attendance/evaluate', json={
        'entries': [_entry(), _entry(token='5555')],
        'createSession': True,
    }).get_json()
    session_id = body['sessionId']

    cached = client.get(f'/api/sessions/{session_id}')
    assert cached.status_code == 200
    assert len(cached.get_json()['perDay']) == 2

    mapped = client.post('/api/identities/map', json={
        'token': '5555', 'employeeId': 'emp-3', 'sessionId': session_id,
    })
    assert mapped.status_code == 200
    assert mapped.get_json()['perDay'][0]['employeeId'] == 'emp-3'

    refreshed = client.get(f'/api/sessions/{session_id}').get_json()
    assert {row['employeeId'] for row in refreshed['perDay']} == {'emp-3'}
    assert len(refreshed['perEmployee']) == 1


def test_unknown_session_is_404(client):
    assert client.get('/api/sessions/does-not-exist').status_code == 404
    response = client.post('/api/identities/map', json={
        'token': '5555', 'employeeId': 'emp-3', 'sessionId': 'does-not-exist',
    })
    assert response.status_code == 404


def test_mapping_to_unknown_employee_is_404(client, repository):
    response = client.post('/api/identities/map', json={'token': '5555', 'employeeId': 'ghost'})
    assert response.status_code == 404
    assert repository.identity_mappings == {}


def test_mapping_without_session_only_persists(client, repository):
    response = client.post('/api/identities/map', json={'token': ' 5555, E-1', 'employeeId': 'emp-3'})
    assert response.status_code == 200
    assert response.get_json() == {'token': '5555', 'employeeId': 'emp-3'}
    assert repository.identity_mappings == {'5555': 'emp-3'}


def test_resolve_identities(client):
    response = client.post('/api/identities/resolve', json={'tokens': ['0007', '9999']})
    body = response.get_json()
    assert body['0007']['status'] == 'ambiguous'
    assert len(body['0007']['candidates']) == 2
    assert body['9999']['status'] == 'unmatched'

    assert client.post('/api/identities/resolve', json={'tokens': 'x'}).status_code == 400


def _xlsx_bytes(*extra_rows):
    wb = Workbook()
    ws = wb.active
    ws.append(['Employee ID', 'Date', 'Time'])
    ws.append(['1001', datetime(2024, 3, 4), '08:00:00'])
    ws.append(['1001', datetime(2024, 3, 4), '17:00:00'])
    for row in extra_rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer


def test_upload_evaluates_and_opens_session(client, tmp_path):
    response = client.post(
        '/api/attendance/upload',
        data={'xlsx_file': (_xlsx_bytes(), 'march.xlsx')},
        content_type='multipart/form-data',
    )
    assert response.status_code == 200
    body = response.get_json()
    assert body['sessionId']
    assert body['perDay'][0]['sourceFiles'] == ['march.xlsx']
    assert body['perDay'][0]['workedMinutes'] == 480
    # the temporary upload is cleaned up
    assert list(tmp_path.iterdir()) == []


def test_upload_rejects_other_files(client):
    response = client.post(
        '/api/attendance/upload',
        data={'xlsx_file': (io.BytesIO(b'a,b'), 'log.csv')},
        content_type='multipart/form-data',
    )
    assert response.status_code == 400
    assert response.get_json()['fields'][0]['field'] == 'xlsx_file'


def test_upload_reports_only_the_requested_dates(client):
    response = client.post(
        '/api/attendance/upload',
        data={
            'xlsx_file': (_xlsx_bytes(['1001', datetime(2024, 3, 5), '09:30:00']), 'march.xlsx'),
            'date_from': '2024-03-04',
            'date_to': '2024-03-04',
        },
        content_type='multipart/form-data',
    )
    assert response.status_code == 200
    body = response.get_json()
    assert [row['dateISO'] for row in body['perDay']] == ['2024-03-04']
    summary = body['perEmployee'][0]
    assert summary['daysEvaluated'] == 1
    assert summary['lateDays'] == 0
    assert summary['undertimeDays'] == 0

    cached = client.get(f"/api/sessions/{body['sessionId']}").get_json()
    assert [row['dateISO'] for row in cached['perDay']] == ['2024-03-04']


def test_evaluate_honours_date_window(client):
    response = client.post('/api/attendance/evaluate', json={
        'entries': [_entry(), _entry(date_iso='2024-03-05', times=('09:30',))],
        'dateFrom': '2024-03-04',
        'dateTo': '2024-03-04',
    })
    body = response.get_json()
    assert [row['dateISO'] for row in body['perDay']] == ['2024-03-04']
    assert body['perEmployee'][0]['daysEvaluated'] == 1


def test_evaluate_rejects_reversed_window_and_bad_flags(client):
    response = client.post('/api/attendance/evaluate', json={
        'entries': [_entry()],
        'dateFrom': '2024-03-05',
        'dateTo': '2024-03-04',
    })
    assert response.status_code == 400

    response = client.post('/api/attendance/evaluate', json={'entries': [_entry()], 'createSession': 'yes'})
    assert response.status_code == 400
    assert response.get_json()['fields'][0]['field'] == 'createSession'


def test_mapping_requires_token_and_employee(client):
    response = client.post('/api/identities/map', json={'token': '  ', 'sessionId': ''})
    assert response.status_code == 400
    fields = {f['field'] for f in response.get_json()['fields']}
    assert fields == {'token', 'employeeId', 'sessionId'}
