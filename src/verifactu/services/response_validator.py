from __future__ import annotations

import logging

from lxml import etree

from verifactu.models.invoice import InvoiceRecord
from verifactu.models.result import ResultKind, SubmissionResult
from verifactu.services.exceptions import (
    BusinessRejection,
    ProtocolError,
    UnrecognizedStatus,
    VerifactuError,
)

logger = logging.getLogger(__name__)

# EstadoEnvio
SUBMISSION_ACCEPTED = "Correcto"
SUBMISSION_PARTIAL = "ParcialmenteCorrecto"
SUBMISSION_REJECTED = "Incorrecto"

# EstadoRegistro
RECORD_ACCEPTED = "Correcto"
RECORD_ACCEPTED_WITH_ERRORS = "AceptadoConErrores"
RECORD_REJECTED = "Incorrecto"

# Per-record response element; older fixtures use RegistroFacturacion.
_RECORD_TAGS = ("RespuestaLinea", "RegistroFacturacion")

_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)

_KIND_BY_ERROR: dict[type[VerifactuError], ResultKind] = {
    ProtocolError: ResultKind.PROTOCOL_ERROR,
    BusinessRejection: ResultKind.BUSINESS_REJECTION,
    UnrecognizedStatus: ResultKind.UNRECOGNIZED_STATUS,
}


def parse_xml(raw: str | bytes) -> etree._Element:
    """Parse a response body without resolving entities or touching the network."""
    data = raw.encode("utf-8") if isinstance(raw, str) else raw
    return etree.fromstring(data, parser=_PARSER)


def _local(el: etree._Element) -> str:
    return etree.QName(el).localname if isinstance(el.tag, str) else ""


def _find(el: etree._Element, name: str) -> etree._Element | None:
    """First descendant with local name *name*, whatever its namespace."""
    for child in el.iter():
        if child is not el and _local(child) == name:
            return child
    return None


def _text(el: etree._Element | None, name: str) -> str | None:
    if el is None:
        return None
    found = _find(el, name)
    if found is None or found.text is None:
        return None
    return found.text.strip() or None


def _child_text(el: etree._Element, name: str) -> str | None:
    """Text of a direct child; keeps envelope fields apart from record fields."""
    for child in el:
        if _local(child) == name and child.text and child.text.strip():
            return child.text.strip()
    return None


def has_soap_fault(raw: str | bytes | None) -> bool:
    if not raw:
        return False
    try:
        root = parse_xml(raw)
    except etree.XMLSyntaxError:
        return False
    return _find(root, "Fault") is not None


def _record_lines(root: etree._Element) -> list[etree._Element]:
    return [el for el in root.iter() if isinstance(el.tag, str) and _local(el) in _RECORD_TAGS]


def _select_line(lines: list[etree._Element], number: str | None) -> etree._Element | None:
    if not lines:
        return None
    if number is None:
        return lines[0]
    for line in lines:
        if _text(line, "NumSerieFactura") == number:
            return line
    return None


def _check_fault(root: etree._Element) -> None:
    fault = _find(root, "Fault")
    if fault is None:
        return
    text = _text(fault, "faultstring") or _text(fault, "Text") or "SOAP fault"
    raise ProtocolError(text, code=_text(fault, "faultcode"))


def _response_root(root: etree._Element) -> etree._Element:
    """The element holding EstadoEnvio: the SOAP body payload, or *root* itself."""
    status = _find(root, "EstadoEnvio")
    if status is not None and status.getparent() is not None:
        return status.getparent()
    return root


def _check_submission_status(payload: etree._Element, line: etree._Element | None) -> str:
    status = _child_text(payload, "EstadoEnvio")
    if status in (SUBMISSION_ACCEPTED, SUBMISSION_PARTIAL):
        return status
    if status == SUBMISSION_REJECTED:
        code = _child_text(payload, "CodigoError") or _text(line, "CodigoErrorRegistro")
        description = _child_text(payload, "DescripcionError") or _text(
            line, "DescripcionErrorRegistro"
        )
        raise BusinessRejection(description or "Submission rejected", code=code)
    raise UnrecognizedStatus(f"Unrecognized EstadoEnvio: {status!r}")


def _tracking_code(payload: etree._Element, line: etree._Element) -> str | None:
    return _text(line, "CSV") or _child_text(payload, "CSV")


def _classify_record(
    payload: etree._Element, line: etree._Element | None, base: dict
) -> SubmissionResult:
    if line is None:
        raise ProtocolError("Response carries no record status")
    status = _text(line, "EstadoRegistro")
    code = _text(line, "CodigoErrorRegistro")
    description = _text(line, "DescripcionErrorRegistro")

    if status in (RECORD_ACCEPTED, RECORD_ACCEPTED_WITH_ERRORS):
        csv = _tracking_code(payload, line)
        if not csv:
            raise ProtocolError(f"Record {status} but no tracking code returned")
        if status == RECORD_ACCEPTED:
            return SubmissionResult(
                kind=ResultKind.SUCCESS, tracking_code=csv, record_status=status, **base
            )
        logger.warning("Record accepted with errors: %s %s", code, description)
        return SubmissionResult(
            kind=ResultKind.SUCCESS,
            tracking_code=csv,
            record_status=status,
            warning_code=code,
            warning_description=description,
            **base,
        )
    if status == RECORD_REJECTED:
        raise BusinessRejection(description or "Record rejected", code=code)
    raise UnrecognizedStatus(f"Unrecognized EstadoRegistro: {status!r}")


def validate_response(
    raw: str | bytes,
    record: InvoiceRecord | None = None,
) -> SubmissionResult:
    """Classify an AEAT response into a SubmissionResult.

    Stages, terminal at the first failure:
    1. SOAP fault -> protocol error.
    2. EstadoEnvio: Correcto / ParcialmenteCorrecto continue, Incorrecto is
       a business rejection, anything else is an unrecognized status.
    3. EstadoRegistro of the record (matched by number when *record* is
       given): Correcto and AceptadoConErrores succeed only with a CSV
       tracking code; Incorrecto is a business rejection.
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    base: dict = {"raw_response": text}
    if record is not None:
        base.update(
            issuer_tax_id=record.invoice.issuer_tax_id,
            number=record.invoice.number,
            issue_date=record.invoice.issue_date,
            hash=record.hash,
        )

    line: etree._Element | None = None
    try:
        try:
            root = parse_xml(raw)
        except etree.XMLSyntaxError as exc:
            raise ProtocolError(f"Unparseable response: {exc}") from exc
        _check_fault(root)
        payload = _response_root(root)
        line = _select_line(
            _record_lines(root), record.invoice.number if record is not None else None
        )
        _check_submission_status(payload, line)
        return _classify_record(payload, line, base)
    except (ProtocolError, BusinessRejection, UnrecognizedStatus) as exc:
        return SubmissionResult(
            kind=_KIND_BY_ERROR[type(exc)],
            record_status=_text(line, "EstadoRegistro"),
            error_code=exc.code,
            error_description=exc.message,
            **base,
        )
