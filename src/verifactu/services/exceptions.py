from __future__ import annotations


class VerifactuError(Exception):
    """Base for every failure the submission pipeline can classify."""

    def __init__(
        self,
        message: str,
        response: str | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.response = response
        self.code = code


class ValidationError(VerifactuError, ValueError):
    """Input cannot be fingerprinted, classified or composed. Never retried."""


class SignatureError(VerifactuError):
    """The signing collaborator failed."""


class TransportError(VerifactuError):
    """No usable response: connection failure, timeout or 5xx after retries."""


class ProtocolError(VerifactuError):
    """A response arrived but is a SOAP fault or otherwise not a valid answer."""


class BusinessRejection(VerifactuError):
    """AEAT explicitly rejected the submission or the record."""


class UnrecognizedStatus(VerifactuError):
    """AEAT returned a status value outside the known enumeration."""
