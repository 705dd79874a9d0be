from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from verifactu.config import HASH_TYPE, ID_VERSION, SystemConfig
from verifactu.models.breakdown import (
    ExemptBreakdown,
    NotSubjectBreakdown,
    SubjectBreakdown,
    TaxBreakdown,
)
from verifactu.models.chain import ChainLink
from verifactu.models.codes import InvoiceType, RectificationType
from verifactu.models.invoice import Invoice, InvoiceId, InvoiceRecord
from verifactu.models.recipient import Recipient
from verifactu.services.exceptions import ValidationError

# Element order of RegistroAlta, fixed by SuministroInformacion.xsd.
RECORD_SLOTS: tuple[str, ...] = (
    "IDVersion",
    "IDFactura",
    "RefExterna",
    "NombreRazonEmisor",
    "Subsanacion",
    "RechazoPrevio",
    "TipoFactura",
    "TipoRectificativa",
    "FacturasRectificadas",
    "FacturasSustituidas",
    "ImporteRectificacion",
    "FechaOperacion",
    "DescripcionOperacion",
    "FacturaSimplificadaArt7273",
    "FacturaSinIdentifDestinatarioArt61d",
    "Destinatarios",
    "Desglose",
    "CuotaTotal",
    "ImporteTotal",
    "Encadenamiento",
    "SistemaInformatico",
    "FechaHoraHusoGenRegistro",
    "TipoHuella",
    "Huella",
)

# Element order of DetalleDesglose.
BREAKDOWN_SLOTS: tuple[str, ...] = (
    "Impuesto",
    "ClaveRegimen",
    "CalificacionOperacion",
    "OperacionExenta",
    "TipoImpositivo",
    "BaseImponibleOimporteNoSujeto",
    "CuotaRepercutida",
    "TipoRecargoEquivalencia",
    "CuotaRecargoEquivalencia",
)

_NO_RECIPIENT_TYPES = frozenset({InvoiceType.SIMPLIFIED, InvoiceType.RECTIFICATIVE_SIMPLIFIED})

Tree = dict[str, object]


def _ordered(slots: Sequence[str], values: Mapping[str, object]) -> Tree:
    """Lay out *values* in *slots* order, dropping absent (None) optional slots."""
    unknown = set(values) - set(slots)
    if unknown:
        raise ValueError(f"Unknown slots: {', '.join(sorted(unknown))}")
    return {slot: values[slot] for slot in slots if values.get(slot) is not None}


def _flag(value: bool) -> str | None:
    return "S" if value else None


def _yes_no(value: bool) -> str:
    return "S" if value else "N"


def _invoice_id(inv: InvoiceId) -> Tree:
    return {
        "IDEmisorFactura": inv.issuer_tax_id,
        "NumSerieFactura": inv.number,
        "FechaExpedicionFactura": inv.issue_date,
    }


def _strip_country_prefix(raw_id: str, country: str) -> str:
    value = raw_id.strip()
    if len(value) > len(country) and value.upper().startswith(country):
        return value[len(country):]
    return value


def compose_recipient(recipient: Recipient, home_country: str) -> Tree:
    if recipient.is_foreign_identity:
        return {
            "NombreRazon": recipient.name,
            "IDOtro": {
                "CodigoPais": recipient.country,
                "IDType": recipient.id_type.value,
                "ID": _strip_country_prefix(recipient.foreign_id, recipient.country),
            },
        }
    if recipient.country != home_country:
        raise ValidationError(
            f"Recipient '{recipient.name}' from {recipient.country} needs a foreign id type"
        )
    return {"NombreRazon": recipient.name, "NIF": recipient.tax_id}


def compose_breakdown(breakdown: TaxBreakdown) -> Tree:
    values: dict[str, object] = {
        "Impuesto": breakdown.tax_type.value,
        "ClaveRegimen": breakdown.regime.value if breakdown.regime is not None else None,
        "BaseImponibleOimporteNoSujeto": breakdown.base,
    }
    if isinstance(breakdown, SubjectBreakdown):
        values["CalificacionOperacion"] = breakdown.operation.value
        values["TipoImpositivo"] = breakdown.rate
        values["CuotaRepercutida"] = breakdown.tax_amount
        values["TipoRecargoEquivalencia"] = breakdown.surcharge_rate
        values["CuotaRecargoEquivalencia"] = breakdown.surcharge_amount
    elif isinstance(breakdown, NotSubjectBreakdown):
        values["CalificacionOperacion"] = breakdown.operation.value
    elif isinstance(breakdown, ExemptBreakdown):
        values["OperacionExenta"] = breakdown.exemption.value
    else:
        raise ValidationError(f"Unclassified breakdown: {breakdown!r}")
    return _ordered(BREAKDOWN_SLOTS, values)


def compose_chaining(link: ChainLink) -> Tree:
    link.validate()
    if link.first_record:
        return {"PrimerRegistro": "S"}
    prev = link.previous
    return {
        "RegistroAnterior": {
            "IDEmisorFactura": prev.issuer_tax_id,
            "NumSerieFactura": prev.number,
            "FechaExpedicionFactura": prev.issue_date,
            "Huella": prev.hash,
        }
    }


def compose_system(system: SystemConfig) -> Tree:
    return {
        "NombreRazon": system.issuer_name,
        "NIF": system.issuer_tax_id,
        "NombreSistemaInformatico": system.system_name,
        "IdSistemaInformatico": system.system_id,
        "Version": system.system_version,
        "NumeroInstalacion": system.installation_number,
        "TipoUsoPosibleSoloVerifactu": _yes_no(system.solo_verifactu),
        "TipoUsoPosibleMultiOT": _yes_no(system.multi_ot),
        "IndicadorMultiplesOT": _yes_no(system.multiple_ot),
    }


def _rectification_slots(invoice: Invoice) -> dict[str, object]:
    rect = invoice.rectification
    if rect is None:
        if invoice.invoice_type.is_rectificative:
            raise ValidationError(
                f"Invoice type {invoice.invoice_type.value} requires a rectification type"
            )
        return {}
    if not invoice.invoice_type.is_rectificative:
        raise ValidationError(
            f"Invoice type {invoice.invoice_type.value} cannot carry a rectification"
        )

    amounts = None
    if rect.base_amount is not None or rect.tax_amount is not None:
        if rect.base_amount is None or rect.tax_amount is None:
            raise ValidationError("Rectified amounts need both base and tax")
        amounts = {
            "BaseRectificada": rect.base_amount,
            "CuotaRectificada": rect.tax_amount,
        }
        if rect.surcharge_amount is not None:
            amounts["CuotaRecargoRectificado"] = rect.surcharge_amount
    elif rect.type is RectificationType.SUBSTITUTION:
        raise ValidationError("Rectification by substitution requires rectified amounts")

    return {
        "TipoRectificativa": rect.type.value,
        "FacturasRectificadas": (
            {"IDFacturaRectificada": [_invoice_id(r) for r in rect.rectified]}
            if rect.rectified
            else None
        ),
        "ImporteRectificacion": amounts,
    }


def _recipients_slot(invoice: Invoice, home_country: str) -> Tree | None:
    if not invoice.recipients:
        return None
    if invoice.invoice_type in _NO_RECIPIENT_TYPES:
        raise ValidationError(
            f"Invoice type {invoice.invoice_type.value} cannot identify recipients"
        )
    return {"IDDestinatario": [compose_recipient(r, home_country) for r in invoice.recipients]}


def compose_record(record: InvoiceRecord, system: SystemConfig) -> Tree:
    """Assemble the RegistroAlta tree of *record* in schema order.

    Pure transform: the returned dict holds str leaves, dict subtrees and
    lists of dicts for repeated siblings, keyed in ``RECORD_SLOTS`` order.
    """
    invoice = record.invoice
    if not record.breakdowns:
        raise ValidationError(f"Invoice {invoice.number}: no breakdowns")
    if invoice.substituted and invoice.invoice_type is not InvoiceType.SUBSTITUTE:
        raise ValidationError("Only F3 invoices can list substituted invoices")

    values: dict[str, object] = {
        "IDVersion": ID_VERSION,
        "IDFactura": _invoice_id(invoice.invoice_id),
        "RefExterna": invoice.external_reference,
        "NombreRazonEmisor": invoice.issuer_name or system.issuer_name,
        "Subsanacion": _flag(invoice.correction),
        "RechazoPrevio": (
            invoice.previous_rejection.value if invoice.previous_rejection is not None else None
        ),
        "TipoFactura": invoice.invoice_type.value,
        **_rectification_slots(invoice),
        "FacturasSustituidas": (
            {"IDFacturaSustituida": [_invoice_id(s) for s in invoice.substituted]}
            if invoice.substituted
            else None
        ),
        "FechaOperacion": invoice.operation_date,
        "DescripcionOperacion": invoice.description,
        "FacturaSimplificadaArt7273": _flag(invoice.simplified_art_7273),
        "FacturaSinIdentifDestinatarioArt61d": _flag(invoice.no_recipient_id_art_61d),
        "Destinatarios": _recipients_slot(invoice, system.home_country),
        "Desglose": {"DetalleDesglose": [compose_breakdown(b) for b in record.breakdowns]},
        "CuotaTotal": invoice.total_tax,
        "ImporteTotal": invoice.total_amount,
        "Encadenamiento": compose_chaining(record.chain_link),
        "SistemaInformatico": compose_system(system),
        "FechaHoraHusoGenRegistro": record.generated_at,
        "TipoHuella": HASH_TYPE,
        "Huella": record.hash,
    }
    return _ordered(RECORD_SLOTS, values)


def compose_header(system: SystemConfig) -> Tree:
    header: Tree = {
        "ObligadoEmision": {
            "NombreRazon": system.issuer_name,
            "NIF": system.issuer_tax_id,
        }
    }
    if system.representative_tax_id and system.representative_tax_id != system.issuer_tax_id:
        header["Representante"] = {
            "NombreRazon": system.representative_name or system.representative_tax_id,
            "NIF": system.representative_tax_id,
        }
    return header


def compose_document(records: Iterable[InvoiceRecord], system: SystemConfig) -> Tree:
    """Assemble the RegFactuSistemaFacturacion body: header plus one RegistroAlta per record."""
    records = list(records)
    for record in records:
        if record.invoice.issuer_tax_id != system.issuer_tax_id:
            raise ValidationError(
                f"Invoice {record.invoice.number} is issued by {record.invoice.issuer_tax_id}, "
                f"not by the configured issuer {system.issuer_tax_id}"
            )
    registrations = [{"RegistroAlta": compose_record(r, system)} for r in records]
    if not registrations:
        raise ValidationError("At least one record is required")
    return {
        "Cabecera": compose_header(system),
        "RegistroFactura": registrations,
    }
