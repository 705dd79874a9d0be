from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from lxml import etree

from verifactu.config import SystemConfig
from verifactu.models.chain import ChainLink
from verifactu.models.invoice import Invoice, InvoiceRecord
from verifactu.models.result import ResultKind, SubmissionResult
from verifactu.services.aeat_client import AeatClient
from verifactu.services.classifier import classify_breakdowns
from verifactu.services.exceptions import (
    BusinessRejection,
    ProtocolError,
    SignatureError,
    TransportError,
    UnrecognizedStatus,
    ValidationError,
    VerifactuError,
)
from verifactu.services.fingerprint import fingerprint_fields, generate_fingerprint
from verifactu.services.record_composer import compose_document
from verifactu.services.response_validator import validate_response
from verifactu.services.xml_serializer import serialize
from verifactu.services.xml_signer import DocumentSigner, sign_document
from verifactu.utils.chain_lock import issuer_chain_lock
from verifactu.utils.validators import ensure, validate_timestamp

logger = logging.getLogger(__name__)

_KIND_BY_ERROR: tuple[tuple[type[VerifactuError], ResultKind], ...] = (
    (ValidationError, ResultKind.VALIDATION_ERROR),
    (SignatureError, ResultKind.SIGNATURE_ERROR),
    (TransportError, ResultKind.TRANSPORT_ERROR),
    (ProtocolError, ResultKind.PROTOCOL_ERROR),
    (BusinessRejection, ResultKind.BUSINESS_REJECTION),
    (UnrecognizedStatus, ResultKind.UNRECOGNIZED_STATUS),
)


def _now() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def _kind_for(exc: VerifactuError) -> ResultKind:
    for error_type, kind in _KIND_BY_ERROR:
        if isinstance(exc, error_type):
            return kind
    return ResultKind.PROTOCOL_ERROR


def failure_result(
    invoice: Invoice, exc: VerifactuError, record: InvoiceRecord | None = None
) -> SubmissionResult:
    """Turn a pipeline error into a typed result carrying the record identity."""
    return SubmissionResult(
        kind=_kind_for(exc),
        issuer_tax_id=invoice.issuer_tax_id,
        number=invoice.number,
        issue_date=invoice.issue_date,
        hash=record.hash if record is not None else None,
        error_code=exc.code,
        error_description=exc.message,
        raw_response=exc.response,
    )


def prepare_record(
    invoice: Invoice,
    chain_link: ChainLink,
    generated_at: str | None = None,
) -> InvoiceRecord:
    """Classify breakdowns and compute the fingerprint once.

    The returned record is immutable; keep it to re-submit the same logical
    invoice with the same fingerprint. Callers must hold the issuer's chain
    lock while preparing (``submit_invoice`` does).
    """
    chain_link.validate()
    if chain_link.previous is not None and chain_link.previous.issuer_tax_id != invoice.issuer_tax_id:
        raise ValidationError(
            f"Previous record belongs to issuer {chain_link.previous.issuer_tax_id}, "
            f"not {invoice.issuer_tax_id}"
        )
    breakdowns = classify_breakdowns(invoice.lines)
    timestamp = ensure(validate_timestamp, generated_at or _now())
    fingerprint = generate_fingerprint(fingerprint_fields(invoice, chain_link, timestamp))
    logger.debug("Fingerprint input for %s: %s", invoice.number, fingerprint.canonical_input)
    return InvoiceRecord(
        invoice=invoice,
        chain_link=chain_link,
        breakdowns=breakdowns,
        generated_at=timestamp,
        fingerprint=fingerprint,
    )


def build_document(
    records: Sequence[InvoiceRecord],
    system: SystemConfig,
    signer: DocumentSigner | None = None,
) -> etree._Element:
    """Compose, serialize and (when a signer is given) sign the registration document."""
    document = serialize(compose_document(records, system))
    if signer is not None:
        document = sign_document(signer, document)
    return document


def _send(
    record: InvoiceRecord,
    system: SystemConfig,
    client: AeatClient,
    signer: DocumentSigner | None,
) -> SubmissionResult:
    invoice = record.invoice
    try:
        document = build_document([record], system, signer)
        raw = client.send(document)
    except VerifactuError as exc:
        logger.warning("Submission of %s failed: %s", invoice.number, exc.message)
        return failure_result(invoice, exc, record)

    result = validate_response(raw, record)
    if result.ok:
        logger.info("Invoice %s registered, CSV %s", invoice.number, result.tracking_code)
    else:
        logger.warning(
            "Invoice %s not registered (%s): %s %s",
            invoice.number,
            result.kind.value,
            result.error_code or "",
            result.error_description or "",
        )
    return result


def submit_record(
    record: InvoiceRecord,
    system: SystemConfig,
    client: AeatClient,
    signer: DocumentSigner | None = None,
    lock_dir: Path | None = None,
) -> SubmissionResult:
    """Submit an already prepared record under its issuer's chain lock.

    Never raises for pipeline failures: every error comes back as a
    SubmissionResult. Nothing is persisted here.
    """
    with issuer_chain_lock(record.invoice.issuer_tax_id, lock_dir):
        return _send(record, system, client, signer)


def submit_invoice(
    invoice: Invoice,
    chain_link: ChainLink,
    system: SystemConfig,
    client: AeatClient,
    signer: DocumentSigner | None = None,
    lock_dir: Path | None = None,
    generated_at: str | None = None,
) -> tuple[InvoiceRecord | None, SubmissionResult]:
    """Fingerprint and submit *invoice* while holding its issuer's chain lock.

    Returns the prepared record (None when preparation failed) so the caller
    can persist its hash and reuse it for a retry.
    """
    with issuer_chain_lock(invoice.issuer_tax_id, lock_dir):
        try:
            record = prepare_record(invoice, chain_link, generated_at)
        except VerifactuError as exc:
            logger.warning("Invoice %s cannot be prepared: %s", invoice.number, exc.message)
            return None, failure_result(invoice, exc)
        return record, _send(record, system, client, signer)
