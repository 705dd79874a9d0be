from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ResultKind(str, Enum):
    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    SIGNATURE_ERROR = "signature_error"
    TRANSPORT_ERROR = "transport_error"
    PROTOCOL_ERROR = "protocol_error"
    BUSINESS_REJECTION = "business_rejection"
    UNRECOGNIZED_STATUS = "unrecognized_status"


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of one submission attempt. Not retained by the core."""

    kind: ResultKind
    issuer_tax_id: str | None = None
    number: str | None = None
    issue_date: str | None = None
    hash: str | None = None
    tracking_code: str | None = None
    record_status: str | None = None
    warning_code: str | None = None
    warning_description: str | None = None
    error_code: str | None = None
    error_description: str | None = None
    raw_response: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind is ResultKind.SUCCESS

    @property
    def has_warnings(self) -> bool:
        return self.ok and (self.warning_code is not None or self.warning_description is not None)

    def to_dict(self) -> dict:
        """Flatten for persistence or display; raw response excluded."""
        return {
            "kind": self.kind.value,
            "issuer_tax_id": self.issuer_tax_id,
            "number": self.number,
            "issue_date": self.issue_date,
            "hash": self.hash,
            "tracking_code": self.tracking_code,
            "record_status": self.record_status,
            "warning_code": self.warning_code,
            "warning_description": self.warning_description,
            "error_code": self.error_code,
            "error_description": self.error_description,
        }
