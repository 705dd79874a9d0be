from __future__ import annotations

from decimal import Decimal

from verifactu.models.breakdown import (
    BreakdownLine,
    ExemptBreakdown,
    NotSubjectBreakdown,
    SubjectBreakdown,
    TaxBreakdown,
)
from verifactu.models.codes import ExemptionType, OperationType, RegimeType, TaxType
from verifactu.services.exceptions import ValidationError
from verifactu.utils.validators import ensure, validate_amount, validate_rate

# ClaveRegimen is mandatory for these taxes and meaningless for the rest.
_REGIME_REQUIRED = frozenset({TaxType.IVA, TaxType.IGIC})

_OPERATION_CODES = frozenset(op.value for op in OperationType)
_EXEMPTION_CODES = frozenset(ex.value for ex in ExemptionType)


def _regime(line: BreakdownLine, tax_type: TaxType) -> RegimeType | None:
    if line.regime is None or not str(line.regime).strip():
        if tax_type in _REGIME_REQUIRED:
            raise ValidationError(f"ClaveRegimen is required for tax type {tax_type.value}")
        return None
    return RegimeType.parse(line.regime, "ClaveRegimen")


def _is_zero(value: str | None) -> bool:
    return value is None or Decimal(ensure(validate_amount, value)) == 0


def _subject(
    line: BreakdownLine, operation: OperationType, tax_type: TaxType, regime: RegimeType | None
) -> SubjectBreakdown:
    if line.rate is None or line.tax_amount is None:
        raise ValidationError(f"Operation {operation.value} requires a rate and a tax amount")
    if (line.surcharge_rate is None) != (line.surcharge_amount is None):
        raise ValidationError("Equivalence surcharge needs both rate and amount")
    return SubjectBreakdown(
        tax_type=tax_type,
        regime=regime,
        base=ensure(validate_amount, line.base),
        operation=operation,
        rate=ensure(validate_rate, line.rate),
        tax_amount=ensure(validate_amount, line.tax_amount),
        surcharge_rate=(
            None if line.surcharge_rate is None else ensure(validate_rate, line.surcharge_rate)
        ),
        surcharge_amount=(
            None if line.surcharge_amount is None else ensure(validate_amount, line.surcharge_amount)
        ),
    )


def _reject_tax_fields(line: BreakdownLine) -> None:
    if not _is_zero(line.tax_amount):
        raise ValidationError(f"Operation {line.code} cannot carry a tax amount")
    if line.surcharge_rate is not None or line.surcharge_amount is not None:
        raise ValidationError(f"Operation {line.code} cannot carry an equivalence surcharge")


def classify_breakdown(line: BreakdownLine) -> TaxBreakdown:
    """Map a breakdown line to its wire shape: SUBJECT, NOT_SUBJECT or EXEMPT.

    Unknown tax types, regimes or operation/exemption codes raise
    ValidationError; nothing falls back to SUBJECT.
    """
    tax_type = TaxType.parse(line.tax_type, "Impuesto")
    regime = _regime(line, tax_type)
    code = (line.code or "").strip().upper()

    if code in _OPERATION_CODES:
        operation = OperationType(code)
        if operation.is_subject:
            return _subject(line, operation, tax_type, regime)
        _reject_tax_fields(line)
        return NotSubjectBreakdown(
            tax_type=tax_type,
            regime=regime,
            base=ensure(validate_amount, line.base),
            operation=operation,
        )

    if code in _EXEMPTION_CODES:
        _reject_tax_fields(line)
        return ExemptBreakdown(
            tax_type=tax_type,
            regime=regime,
            base=ensure(validate_amount, line.base),
            exemption=ExemptionType(code),
        )

    raise ValidationError(f"Unrecognized operation or exemption code: '{line.code}'")


def classify_breakdowns(lines: tuple[BreakdownLine, ...]) -> tuple[TaxBreakdown, ...]:
    return tuple(classify_breakdown(line) for line in lines)
