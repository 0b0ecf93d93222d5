"""Parsing of device ("bio") tokens and employee external identifiers.

Employee records store the device token in a free-text field using a
comma-suffix convention: the primary token first, optional annotations after
it, e.g. ``"0007,E-2"`` or ``"8540010, E-4"``. Devices report the bare token,
sometimes with the same suffix attached. Both sides go through the same
normalization before they are compared.
"""
import re
from dataclasses import dataclass
from typing import Optional

_NON_ALNUM = re.compile(r'[^0-9A-Za-z]')


def normalize_token(raw, pad_length: int = 0) -> str:
    """Canonical form of a device token; '' when nothing usable is left."""
    if not isinstance(raw, str):
        return ''
    primary = raw.split(',', 1)[0]
    cleaned = _NON_ALNUM.sub('', primary).upper()
    if cleaned and pad_length > 0 and cleaned.isdigit():
        cleaned = cleaned.zfill(pad_length)
    return cleaned


@dataclass(frozen=True)
class BioToken:
    raw: str
    normalized: str

    @classmethod
    def parse(cls, raw, pad_length: int = 0) -> 'BioToken':
        text = raw if isinstance(raw, str) else ''
        return cls(raw=text.strip(), normalized=normalize_token(text, pad_length))

    @property
    def is_valid(self) -> bool:
        return bool(self.normalized)


@dataclass(frozen=True)
class EmployeeNo:
    primary: str
    annotations: tuple

    @classmethod
    def parse(cls, raw: Optional[str]) -> 'EmployeeNo':
        text = (raw or '').strip()
        if not text:
            return cls(primary='', annotations=())
        head, _, tail = text.partition(',')
        annotations = tuple(part.strip() for part in tail.split(',') if part.strip())
        return cls(primary=head.strip(), annotations=annotations)

    def token(self, pad_length: int = 0) -> str:
        return normalize_token(self.primary, pad_length)

    def matches(self, normalized_token: str, pad_length: int = 0) -> bool:
        """True when this identifier equals the token or is "<token>,<annotations>"."""
        if not normalized_token:
            return False
        return self.token(pad_length) == normalized_token


def search_prefixes(token: BioToken) -> list[str]:
    """Prefixes to push down to the directory's "starts with" search.

    Padding may have added zeros the stored identifier lacks (or the other way
    round), so both the raw primary part and the normalized form are searched.
    """
    prefixes = []
    raw_primary = _NON_ALNUM.sub('', token.raw.split(',', 1)[0])
    for candidate in (token.normalized, raw_primary, raw_primary.lstrip('0')):
        if candidate and candidate not in prefixes:
            prefixes.append(candidate)
    return prefixes
