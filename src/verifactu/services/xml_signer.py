from __future__ import annotations

from typing import Protocol

from lxml import etree
from signxml.algorithms import (
    CanonicalizationMethod,
    DigestAlgorithm,
    SignatureConstructionMethod,
    SignatureMethod,
)
from signxml.signer import XMLSigner

from verifactu.services.exceptions import SignatureError
from verifactu.utils.certificate import load_pfx


class DocumentSigner(Protocol):
    """Signing capability consumed by the submission pipeline."""

    def sign(self, document: etree._Element) -> etree._Element: ...


class XmlDsigSigner:
    """Enveloped RSA-SHA256 XML-DSig over the whole registration document."""

    def __init__(self, key_pem: bytes, cert_pem: bytes) -> None:
        self._key_pem = key_pem
        self._cert_pem = cert_pem

    @classmethod
    def from_pfx(cls, pfx_path: str, password: str | None) -> XmlDsigSigner:
        try:
            key_pem, cert_pem, _ = load_pfx(pfx_path, password)
        except (OSError, ValueError) as exc:
            raise SignatureError(f"Signing certificate could not be loaded: {exc}") from exc
        return cls(key_pem, cert_pem)

    def sign(self, document: etree._Element) -> etree._Element:
        signer = XMLSigner(
            method=SignatureConstructionMethod.enveloped,
            signature_algorithm=SignatureMethod.RSA_SHA256,
            digest_algorithm=DigestAlgorithm.SHA256,
            c14n_algorithm=CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0,
        )
        try:
            return signer.sign(document, key=self._key_pem, cert=self._cert_pem.decode())
        except Exception as exc:
            raise SignatureError(f"Document signing failed: {exc}") from exc


def sign_document(signer: DocumentSigner, document: etree._Element) -> etree._Element:
    """Run any signer, surfacing every failure as SignatureError."""
    try:
        signed = signer.sign(document)
    except SignatureError:
        raise
    except Exception as exc:
        raise SignatureError(f"Document signing failed: {exc}") from exc
    if signed is None:
        raise SignatureError("Signer returned no document")
    return signed
