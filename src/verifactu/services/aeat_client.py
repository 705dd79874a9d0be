from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass, field

import requests.exceptions
from lxml import etree
from requests_pkcs12 import get, post

from verifactu.config import (
    CONNECT_TIMEOUT,
    NSMAP,
    OVERALL_TIMEOUT,
    READ_TIMEOUT,
    SOAP_ENV_NS,
    USER_AGENT,
    endpoint_for,
    get_cert_password,
    get_cert_path,
    is_production,
)
from verifactu.services.exceptions import ProtocolError, TransportError
from verifactu.services.http_retry import (
    AEAT_CONNECTIVITY,
    AEAT_SUBMIT,
    RetryableHTTPError,
    RetryPolicy,
    retry_call,
)
from verifactu.services.response_validator import has_soap_fault

logger = logging.getLogger(__name__)

_HEADERS = {
    "Content-Type": "text/xml; charset=utf-8",
    "SOAPAction": "",
    "User-Agent": USER_AGENT,
}


def wrap_envelope(document: etree._Element) -> bytes:
    """Place *document* inside the SOAP 1.1 envelope expected by AEAT."""
    envelope = etree.Element(f"{{{SOAP_ENV_NS}}}Envelope", nsmap=NSMAP)
    etree.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Header")
    body = etree.SubElement(envelope, f"{{{SOAP_ENV_NS}}}Body")
    body.append(copy.deepcopy(document))
    return etree.tostring(envelope, xml_declaration=True, encoding="utf-8")


_CHUNK_SIZE = 8192


@dataclass(frozen=True)
class _Reply:
    """Status and decoded body of a fully read HTTP response."""

    status_code: int
    text: str

    @property
    def ok(self) -> bool:
        return self.status_code < 400


def _read_body(resp, deadline: float) -> str:
    """Read a streamed body, raising Timeout once *deadline* (monotonic) passes."""
    chunks: list[bytes] = []
    if time.monotonic() > deadline:
        raise requests.exceptions.Timeout("AEAT response exceeded the overall timeout")
    for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
        if time.monotonic() > deadline:
            raise requests.exceptions.Timeout("AEAT response exceeded the overall timeout")
        chunks.append(chunk)
    return b"".join(chunks).decode(resp.encoding or "utf-8", errors="replace")


def _body_excerpt(resp) -> str:
    return resp.text[:500] if resp.text else ""


@dataclass(frozen=True)
class AeatClient:
    """Mutual-TLS SOAP client for the VERI*FACTU registration endpoint.

    Only transport failures are retried (connection errors, timeouts and 5xx
    without a SOAP answer). A received SOAP answer is returned as-is, even
    when it is a fault or a rejection, for the response validator to classify.
    """

    cert_path: str
    cert_password: str | None = None
    production: bool = False
    connect_timeout: float = CONNECT_TIMEOUT
    read_timeout: float = READ_TIMEOUT
    overall_timeout: float = OVERALL_TIMEOUT
    policy: RetryPolicy = field(default=AEAT_SUBMIT)
    connectivity_policy: RetryPolicy = field(default=AEAT_CONNECTIVITY)

    @classmethod
    def from_env(cls) -> AeatClient:
        return cls(
            cert_path=get_cert_path(),
            cert_password=get_cert_password(),
            production=is_production(),
        )

    @property
    def url(self) -> str:
        return endpoint_for(self.production)

    def _post(self, payload: bytes) -> _Reply:
        deadline = time.monotonic() + self.overall_timeout
        resp = post(
            self.url,
            data=payload,
            headers=_HEADERS,
            pkcs12_filename=self.cert_path,
            pkcs12_password=self.cert_password,
            timeout=(self.connect_timeout, self.read_timeout),
            stream=True,
        )
        try:
            reply = _Reply(resp.status_code, _read_body(resp, deadline))
        finally:
            resp.close()
        retryable = reply.status_code in self.policy.retryable_status_codes
        if retryable and not has_soap_fault(reply.text):
            raise RetryableHTTPError(f"AEAT error ({reply.status_code}): {_body_excerpt(reply)}")
        return reply

    def send(self, document: etree._Element) -> str:
        """POST *document* wrapped in a SOAP envelope and return the response body.

        Raises TransportError when no usable response arrives and
        ProtocolError for a non-2xx answer that is not a SOAP fault.
        """
        payload = wrap_envelope(document)
        logger.info("Posting %d bytes to %s", len(payload), self.url)

        try:
            resp = retry_call(lambda: self._post(payload), self.policy)
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"AEAT unreachable: {exc}") from exc
        except (OSError, ValueError) as exc:
            raise TransportError(f"Client certificate could not be used: {exc}") from exc

        if not resp.ok and not has_soap_fault(resp.text):
            raise ProtocolError(
                f"AEAT API error ({resp.status_code}): {_body_excerpt(resp)}",
                response=resp.text,
                code=str(resp.status_code),
            )
        return resp.text

    def check_connectivity(self) -> None:
        """Check the endpoint over mutual TLS.

        Any HTTP status proves the TLS handshake succeeded; raises
        TransportError on connection failures.
        """

        def _do_get():
            return get(
                self.url,
                headers={"User-Agent": USER_AGENT},
                pkcs12_filename=self.cert_path,
                pkcs12_password=self.cert_password,
                timeout=(self.connect_timeout, self.read_timeout),
                stream=True,
            )

        try:
            resp = retry_call(_do_get, self.connectivity_policy)
        except requests.exceptions.RequestException as exc:
            raise TransportError(f"AEAT unreachable: {exc}") from exc
        resp.close()
