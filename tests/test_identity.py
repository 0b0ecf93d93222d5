from datetime import datetime

from attendance_engine.models import EmployeeRecord, IdentityCandidate, IdentityStatus
from attendance_engine.repository import InMemoryRepository
from attendance_engine.services.identity import (
    UNKNOWN_OFFICE_LABEL,
    UNMATCHED_LABEL,
    IdentityReconciler,
    format_employee_name,
)


def test_format_employee_name():
    employee = EmployeeRecord(id='e', employee_no=None, last_name='Dela Cruz', first_name='Juan',
                              middle_name='Santos', suffix='Jr.')
    assert format_employee_name(employee) == 'Dela Cruz, Juan S. Jr.'
    assert format_employee_name(EmployeeRecord(id='e', employee_no=None, last_name='Solo')) == 'Solo'
    assert format_employee_name(EmployeeRecord(id='e', employee_no=None)) == 'Unnamed'


def test_shared_token_is_ambiguous_and_lists_candidates(repository):
    resolved = IdentityReconciler(repository).reconcile(['0007', '9999'])

    shared = resolved['0007']
    assert shared.status is IdentityStatus.AMBIGUOUS
    # most recently updated record is the primary pick
    assert shared.employee_id == 'emp-2'
    assert [c.employee_name for c in shared.candidates] == ['Reyes, Ben', 'Santos, Ana']

    missing = resolved['9999']
    assert missing.status is IdentityStatus.UNMATCHED
    assert missing.employee_id is None
    assert missing.employee_name == UNMATCHED_LABEL
    assert missing.office_name == UNKNOWN_OFFICE_LABEL


def test_single_match(repository):
    resolved = IdentityReconciler(repository).reconcile(['1001'])
    match = resolved['1001']
    assert match.status is IdentityStatus.MATCHED
    assert match.employee_id == 'emp-3'
    assert match.employee_name == 'Cruz, Carla L.'
    assert match.office_name == 'Main Office'
    assert match.candidates == []


def test_longer_identifier_with_same_prefix_does_not_match(make_employee):
    repo = InMemoryRepository(employees=[make_employee('emp-9', '00071')])
    assert IdentityReconciler(repo).reconcile(['0007'])['0007'].status is IdentityStatus.UNMATCHED


def test_inactive_employees_are_not_matched(make_employee):
    repo = InMemoryRepository(employees=[make_employee('emp-9', '4242', is_active=False)])
    assert IdentityReconciler(repo).reconcile(['4242'])['4242'].status is IdentityStatus.UNMATCHED


def test_padding_makes_short_tokens_match(make_employee):
    repo = InMemoryRepository(employees=[make_employee('emp-9', '0042')])
    resolved = IdentityReconciler(repo, pad_length=4).reconcile(['42'])
    assert resolved['0042'].employee_id == 'emp-9'


def test_manual_mapping_wins_over_directory_search(repository):
    repository.identity_mappings['0007'] = 'emp-1'
    resolved = IdentityReconciler(repository).reconcile(['0007'])
    assert resolved['0007'].status is IdentityStatus.MATCHED
    assert resolved['0007'].employee_id == 'emp-1'
    assert resolved['0007'].manual is True


def test_manual_mapping_to_unknown_employee_is_ignored(repository):
    repository.identity_mappings['1001'] = 'ghost'
    resolved = IdentityReconciler(repository).reconcile(['1001'])
    assert resolved['1001'].employee_id == 'emp-3'
    assert resolved['1001'].manual is False


def test_hint_skips_directory_search(repository):
    hint = IdentityCandidate(employee_id='emp-1', employee_name='stale name', office_id=None, office_name=None)
    resolved = IdentityReconciler(repository).reconcile(['0007'], hints={'0007': hint})
    assert resolved['0007'].status is IdentityStatus.MATCHED
    assert resolved['0007'].employee_name == 'Santos, Ana'
    assert 'find_employees_by_prefixes' not in [name for name, _ in repository.calls]


def test_unusable_token_is_unmatched_under_raw_text(repository):
    resolved = IdentityReconciler(repository).reconcile(['---'])
    assert resolved['---'].status is IdentityStatus.UNMATCHED


def test_lookups_are_chunked(make_employee):
    repo = InMemoryRepository(employees=[make_employee(f'emp-{i}', f'{i:04d}') for i in range(10)])
    tokens = [f'{i:04d}' for i in range(10)]
    resolved = IdentityReconciler(repo, chunk_size=3).reconcile(tokens)
    assert all(r.status is IdentityStatus.MATCHED for r in resolved.values())
    assert max(size for _, size in repo.calls) <= 3


def test_identity_serializes_camel_case(repository):
    payload = IdentityReconciler(repository).reconcile(['0007'])['0007'].to_dict()
    assert payload['status'] == 'ambiguous'
    assert payload['employeeId'] == 'emp-2'
    assert len(payload['candidates']) == 2
    assert payload['candidates'][0]['employeeName'] == 'Reyes, Ben'


def test_updated_at_orders_candidates(make_employee):
    repo = InMemoryRepository(employees=[
        make_employee('a', '55', 'Old', 'One', updated_at=datetime(2023, 1, 1)),
        make_employee('b', '55', 'New', 'Two', updated_at=datetime(2024, 1, 1)),
    ])
    resolved = IdentityReconciler(repo).reconcile(['55'])['55']
    assert resolved.employee_id == 'b'
    assert [c.employee_id for c in resolved.candidates] == ['b', 'a']
