from __future__ import annotations

import re
from dataclasses import dataclass

from verifactu.services.exceptions import ValidationError

_HASH = re.compile(r"[0-9A-F]{64}")


@dataclass(frozen=True)
class PreviousRecord:
    """Identity and hash of the immediately preceding record of the same issuer."""

    issuer_tax_id: str
    number: str
    issue_date: str
    hash: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "hash", str(self.hash).strip().upper())

    @classmethod
    def from_dict(cls, d: dict) -> PreviousRecord:
        return cls(
            issuer_tax_id=str(d["issuer_tax_id"]),
            number=str(d["number"]),
            issue_date=str(d["issue_date"]),
            hash=str(d["hash"]),
        )


@dataclass(frozen=True)
class ChainLink:
    """Either the first-record marker or a reference to the previous record."""

    first_record: bool = False
    previous: PreviousRecord | None = None

    @classmethod
    def first(cls) -> ChainLink:
        return cls(first_record=True)

    @classmethod
    def after(cls, issuer_tax_id: str, number: str, issue_date: str, hash: str) -> ChainLink:
        return cls(previous=PreviousRecord(issuer_tax_id, number, issue_date, hash))

    def validate(self) -> None:
        if self.first_record and self.previous is not None:
            raise ValidationError("Chain link is both a first record and a continuation")
        if not self.first_record and self.previous is None:
            raise ValidationError("Chain link needs a first-record marker or a previous record")
        if self.previous is not None and not _HASH.fullmatch(self.previous.hash):
            raise ValidationError(
                f"Previous hash must be 64 hexadecimal characters: '{self.previous.hash}'"
            )

    @property
    def previous_hash(self) -> str:
        return self.previous.hash if self.previous is not None else ""


@dataclass(frozen=True)
class Fingerprint:
    hash: str
    canonical_input: str
