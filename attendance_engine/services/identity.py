import logging
from collections import defaultdict
from typing import Iterable, Optional

from ..models import EmployeeRecord, IdentityCandidate, IdentityResolution, IdentityStatus
from .tokens import BioToken, EmployeeNo, normalize_token, search_prefixes

logger = logging.getLogger(__name__)

UNMATCHED_LABEL = '(Unmatched)'
UNKNOWN_OFFICE_LABEL = '(Unknown)'
UNASSIGNED_OFFICE_LABEL = '(Unassigned)'

DEFAULT_CHUNK_SIZE = 200


def format_employee_name(employee: EmployeeRecord) -> str:
    """"Last, First M. Suffix"; falls back to whatever part is present."""
    last = (employee.last_name or '').strip()
    first = (employee.first_name or '').strip()
    middle = (employee.middle_name or '').strip()
    suffix = (employee.suffix or '').strip()

    initials = ' '.join(f"{part[0].upper()}." for part in middle.split())
    name = ', '.join(p for p in (last, first) if p)
    if name and initials:
        name = f"{name} {initials}"
    if name and suffix:
        name = f"{name} {suffix}"
    return name or 'Unnamed'


def _office_label(employee: EmployeeRecord) -> str:
    return (employee.office_name or '').strip() or UNASSIGNED_OFFICE_LABEL


def _candidate(employee: EmployeeRecord) -> IdentityCandidate:
    return IdentityCandidate(
        employee_id=employee.id,
        employee_name=format_employee_name(employee),
        office_id=employee.office_id,
        office_name=_office_label(employee),
    )


def unmatched(token: str) -> IdentityResolution:
    return IdentityResolution(
        token=token,
        status=IdentityStatus.UNMATCHED,
        employee_id=None,
        employee_name=UNMATCHED_LABEL,
        office_id=None,
        office_name=UNKNOWN_OFFICE_LABEL,
    )


def _matched(token: str, candidate: IdentityCandidate, manual: bool = False) -> IdentityResolution:
    return IdentityResolution(
        token=token,
        status=IdentityStatus.MATCHED,
        employee_id=candidate.employee_id,
        employee_name=candidate.employee_name,
        office_id=candidate.office_id,
        office_name=candidate.office_name or UNASSIGNED_OFFICE_LABEL,
        manual=manual,
    )


def _chunks(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class IdentityReconciler:
    """Maps raw device tokens to canonical employees.

    Read-only against the directory and the manual-mapping table. Each call to
    reconcile() performs a fixed number of chunked bulk reads, never one query
    per token.
    """

    def __init__(self, repository, pad_length: int = 0, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.repository = repository
        self.pad_length = pad_length
        self.chunk_size = max(1, chunk_size)

    def parse(self, raw) -> BioToken:
        return BioToken.parse(raw, self.pad_length)

    def reconcile(
        self,
        tokens: Iterable[str],
        hints: Optional[dict] = None,
    ) -> dict:
        """Resolve every token; returns {token key: IdentityResolution}.

        The key is the normalized token, or the raw text when normalization
        leaves nothing. hints maps normalized tokens to an IdentityCandidate
        already chosen by an earlier pass; manual mappings still win over them.
        """
        hints = hints or {}
        parsed = {}
        results = {}
        for raw in tokens:
            token = self.parse(raw)
            if not token.is_valid:
                results[token.raw] = unmatched(token.raw)
                continue
            parsed.setdefault(token.normalized, token)

        if not parsed:
            return results

        normalized = sorted(parsed)
        manual = self._manual_mappings(normalized)
        wanted_ids = set(manual.values())
        wanted_ids.update(h.employee_id for t, h in hints.items() if t in parsed)
        directory = self._employees_by_id(wanted_ids)

        pending = []
        for key in normalized:
            employee_id = manual.get(key)
            if employee_id:
                employee = directory.get(employee_id)
                if employee is not None:
                    results[key] = _matched(key, _candidate(employee), manual=True)
                    continue
                logger.warning("Manual mapping %s -> %s points at an unknown employee; ignored",
                               key, employee_id)
            hint = hints.get(key)
            if hint is not None:
                employee = directory.get(hint.employee_id)
                results[key] = _matched(key, _candidate(employee) if employee else hint)
                continue
            pending.append(key)

        if pending:
            grouped = self._search_directory([parsed[key] for key in pending])
            for key in pending:
                results[key] = self._rank(key, grouped.get(key, []))

        return results

    def _manual_mappings(self, normalized: list[str]) -> dict:
        mappings = {}
        for chunk in _chunks(normalized, self.chunk_size):
            for token, employee_id in self.repository.fetch_identity_mappings(chunk).items():
                key = normalize_token(token, self.pad_length)
                if key and employee_id:
                    mappings[key] = employee_id
        return mappings

    def _employees_by_id(self, ids) -> dict:
        found = {}
        for chunk in _chunks(sorted(i for i in ids if i), self.chunk_size):
            for employee in self.repository.get_employees(chunk):
                found[employee.id] = employee
        return found

    def _search_directory(self, tokens: list[BioToken]) -> dict:
        wanted = {t.normalized for t in tokens}
        prefixes = sorted({p for t in tokens for p in search_prefixes(t)})
        seen = set()
        grouped = defaultdict(list)
        for chunk in _chunks(prefixes, self.chunk_size):
            for employee in self.repository.find_employees_by_prefixes(chunk):
                if employee.id in seen or not employee.is_active:
                    continue
                seen.add(employee.id)
                key = EmployeeNo.parse(employee.employee_no).token(self.pad_length)
                if key in wanted:
                    grouped[key].append(employee)
        return grouped

    def _rank(self, key: str, employees: list[EmployeeRecord]) -> IdentityResolution:
        if not employees:
            return unmatched(key)
        ranked = sorted(employees, key=lambda e: e.id)
        ranked.sort(key=lambda e: e.updated_at, reverse=True)
        resolution = _matched(key, _candidate(ranked[0]))
        if len(ranked) > 1:
            resolution.status = IdentityStatus.AMBIGUOUS
            resolution.candidates = [_candidate(e) for e in ranked]
        return resolution
