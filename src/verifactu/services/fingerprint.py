from __future__ import annotations

import hashlib
from collections.abc import Mapping, Sequence

from verifactu.models.chain import ChainLink, Fingerprint
from verifactu.models.invoice import Invoice, InvoiceRecord
from verifactu.services.exceptions import ValidationError

# Input key -> AEAT field name, in canonical concatenation order.
FIELD_ORDER: tuple[tuple[str, str], ...] = (
    ("issuer_tax_id", "IDEmisorFactura"),
    ("invoice_number", "NumSerieFactura"),
    ("issue_date", "FechaExpedicionFactura"),
    ("invoice_type", "TipoFactura"),
    ("total_tax", "CuotaTotal"),
    ("total_amount", "ImporteTotal"),
    ("previous_hash", "Huella"),
    ("generated_at", "FechaHoraHusoGenRegistro"),
)

_KEYS = frozenset(key for key, _ in FIELD_ORDER)


def _check_fields(fields: Mapping[str, object]) -> None:
    missing = sorted(_KEYS - fields.keys())
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    extra = sorted(str(k) for k in fields.keys() - _KEYS)
    if extra:
        raise ValidationError(f"Unexpected fields: {', '.join(extra)}")
    not_text = sorted(k for k in _KEYS if not isinstance(fields[k], str))
    if not_text:
        raise ValidationError(f"Fields must be strings: {', '.join(not_text)}")


def generate_fingerprint(fields: Mapping[str, str]) -> Fingerprint:
    """Compute the chained SHA-256 fingerprint ("huella") of a registration record.

    *fields* must contain exactly the eight keys of ``FIELD_ORDER``; the
    previous hash is the empty string for the first record of a chain.
    Each value is trimmed before concatenation.
    """
    _check_fields(fields)
    parts = [f"{name}={fields[key].strip()}" for key, name in FIELD_ORDER]
    canonical = "&".join(parts)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest().upper()
    return Fingerprint(hash=digest, canonical_input=canonical)


def fingerprint_fields(invoice: Invoice, chain_link: ChainLink, generated_at: str) -> dict[str, str]:
    """Build the fingerprint input for *invoice* at its chain position."""
    return {
        "issuer_tax_id": invoice.issuer_tax_id,
        "invoice_number": invoice.number,
        "issue_date": invoice.issue_date,
        "invoice_type": invoice.invoice_type.value,
        "total_tax": invoice.total_tax,
        "total_amount": invoice.total_amount,
        "previous_hash": chain_link.previous_hash,
        "generated_at": generated_at,
    }


def verify_chain(records: Sequence[InvoiceRecord]) -> int | None:
    """Recompute a single issuer's chain and return the index of the first broken record.

    A record is broken when its stored hash does not match a recomputation,
    when its previous-hash input differs from its predecessor's hash, or when
    the first record is not marked as first. Returns None for an intact chain.
    """
    for index, record in enumerate(records):
        expected = generate_fingerprint(
            fingerprint_fields(record.invoice, record.chain_link, record.generated_at)
        )
        if expected.hash != record.hash:
            return index
        if index == 0:
            if not record.chain_link.first_record or record.chain_link.previous_hash:
                return index
        elif record.chain_link.previous_hash != records[index - 1].hash:
            return index
    return None
