from __future__ import annotations

from dataclasses import dataclass

from verifactu.models.breakdown import BreakdownLine, TaxBreakdown
from verifactu.models.chain import ChainLink, Fingerprint
from verifactu.models.codes import InvoiceType, PreviousRejection, RectificationType
from verifactu.models.recipient import Recipient
from verifactu.services.exceptions import ValidationError
from verifactu.utils.validators import (
    ensure,
    validate_amount,
    validate_date,
    validate_tax_id,
    validate_text,
)


@dataclass(frozen=True)
class InvoiceId:
    """(issuer id, number, issue date) triple identifying a registered invoice."""

    issuer_tax_id: str
    number: str
    issue_date: str

    @classmethod
    def from_dict(cls, d: dict) -> InvoiceId:
        return cls(
            issuer_tax_id=ensure(validate_tax_id, d.get("issuer_tax_id")),
            number=ensure(validate_text, d.get("number"), "NumSerieFactura", 60),
            issue_date=ensure(validate_date, d.get("issue_date")),
        )


@dataclass(frozen=True)
class Rectification:
    type: RectificationType
    rectified: tuple[InvoiceId, ...] = ()
    base_amount: str | None = None
    tax_amount: str | None = None
    surcharge_amount: str | None = None

    @classmethod
    def from_dict(cls, d: dict) -> Rectification:
        def amount(key: str) -> str | None:
            value = d.get(key)
            return None if value is None else ensure(validate_amount, value)

        return cls(
            type=RectificationType.parse(d.get("type"), "TipoRectificativa"),
            rectified=tuple(InvoiceId.from_dict(r) for r in d.get("rectified", [])),
            base_amount=amount("base_amount"),
            tax_amount=amount("tax_amount"),
            surcharge_amount=amount("surcharge_amount"),
        )


@dataclass(frozen=True)
class Invoice:
    """Committed invoice data handed over by the persistence layer."""

    issuer_tax_id: str
    number: str
    issue_date: str  # DD-MM-YYYY
    invoice_type: InvoiceType
    description: str
    total_tax: str
    total_amount: str
    lines: tuple[BreakdownLine, ...]
    recipients: tuple[Recipient, ...] = ()
    issuer_name: str | None = None
    external_reference: str | None = None
    operation_date: str | None = None
    rectification: Rectification | None = None
    substituted: tuple[InvoiceId, ...] = ()
    correction: bool = False
    previous_rejection: PreviousRejection | None = None
    simplified_art_7273: bool = False
    no_recipient_id_art_61d: bool = False

    def __post_init__(self) -> None:
        if not self.lines:
            raise ValidationError(f"Invoice {self.number}: at least one breakdown line required")

    @property
    def invoice_id(self) -> InvoiceId:
        return InvoiceId(self.issuer_tax_id, self.number, self.issue_date)

    @classmethod
    def from_dict(cls, d: dict) -> Invoice:
        """Create an Invoice from a YAML-loaded dict, normalizing amounts and dates."""
        rectification = d.get("rectification")
        previous_rejection = d.get("previous_rejection")
        operation_date = d.get("operation_date")
        return cls(
            issuer_tax_id=ensure(validate_tax_id, d.get("issuer_tax_id")),
            number=ensure(validate_text, d.get("number"), "NumSerieFactura", 60),
            issue_date=ensure(validate_date, d.get("issue_date")),
            invoice_type=InvoiceType.parse(d.get("type", "F1"), "TipoFactura"),
            description=ensure(validate_text, d.get("description"), "DescripcionOperacion", 500),
            total_tax=ensure(validate_amount, d.get("total_tax")),
            total_amount=ensure(validate_amount, d.get("total_amount")),
            lines=tuple(BreakdownLine.from_dict(b) for b in d.get("breakdowns", [])),
            recipients=tuple(Recipient.from_dict(r) for r in d.get("recipients", [])),
            issuer_name=d.get("issuer_name"),
            external_reference=d.get("external_reference"),
            operation_date=None if operation_date is None else ensure(validate_date, operation_date),
            rectification=None if rectification is None else Rectification.from_dict(rectification),
            substituted=tuple(InvoiceId.from_dict(s) for s in d.get("substituted", [])),
            correction=bool(d.get("correction", False)),
            previous_rejection=(
                None
                if previous_rejection is None
                else PreviousRejection.parse(previous_rejection, "RechazoPrevio")
            ),
            simplified_art_7273=bool(d.get("simplified_art_7273", False)),
            no_recipient_id_art_61d=bool(d.get("no_recipient_id_art_61d", False)),
        )


@dataclass(frozen=True)
class InvoiceRecord:
    """An invoice bound to its chain position and fingerprint.

    Built once per logical submission; re-submitting reuses the same
    fingerprint as long as no other record of the issuer was chained since.
    """

    invoice: Invoice
    chain_link: ChainLink
    breakdowns: tuple[TaxBreakdown, ...]
    generated_at: str
    fingerprint: Fingerprint

    @property
    def hash(self) -> str:
        return self.fingerprint.hash
