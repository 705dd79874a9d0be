from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

from verifactu.models.codes import (
    Classification,
    ExemptionType,
    OperationType,
    RegimeType,
    TaxType,
)


@dataclass(frozen=True)
class BreakdownLine:
    """One taxable line as stored by the caller, before classification.

    ``code`` holds either the operation qualification (S1, S2, N1, N2) or the
    exemption cause (E1-E6).
    """

    tax_type: str
    regime: str | None
    code: str
    base: str
    rate: str | None = None
    tax_amount: str | None = None
    surcharge_rate: str | None = None
    surcharge_amount: str | None = None

    @classmethod
    def from_dict(cls, d: dict) -> BreakdownLine:
        def opt(key: str) -> str | None:
            value = d.get(key)
            return None if value is None else str(value)

        regime = d.get("regime_type", d.get("regime"))
        return cls(
            tax_type=str(d.get("tax_type", "01")).zfill(2),
            regime=None if regime is None else str(regime).zfill(2),
            code=str(d.get("operation_type") or d.get("exemption") or d.get("code") or ""),
            base=str(d.get("base_amount", d.get("base", ""))),
            rate=opt("tax_rate") if "tax_rate" in d else opt("rate"),
            tax_amount=opt("tax_amount"),
            surcharge_rate=opt("surcharge_rate"),
            surcharge_amount=opt("surcharge_amount"),
        )


@dataclass(frozen=True)
class TaxBreakdown:
    tax_type: TaxType
    regime: RegimeType | None
    base: str

    kind: ClassVar[Classification]


@dataclass(frozen=True)
class SubjectBreakdown(TaxBreakdown):
    """Subject and not exempt: the only variant with a rate and a tax amount."""

    operation: OperationType
    rate: str
    tax_amount: str
    surcharge_rate: str | None = None
    surcharge_amount: str | None = None

    kind: ClassVar[Classification] = Classification.SUBJECT


@dataclass(frozen=True)
class NotSubjectBreakdown(TaxBreakdown):
    operation: OperationType

    kind: ClassVar[Classification] = Classification.NOT_SUBJECT


@dataclass(frozen=True)
class ExemptBreakdown(TaxBreakdown):
    exemption: ExemptionType

    kind: ClassVar[Classification] = Classification.EXEMPT
