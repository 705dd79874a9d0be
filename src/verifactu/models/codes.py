from __future__ import annotations

from enum import Enum

from verifactu.services.exceptions import ValidationError


class _Code(str, Enum):
    """A closed AEAT code list. Unknown values fail at construction."""

    @classmethod
    def parse(cls, value: object, field: str | None = None):
        if isinstance(value, cls):
            return value
        raw = "" if value is None else str(value).strip()
        try:
            return cls(raw)
        except ValueError:
            label = field or cls.__name__
            raise ValidationError(f"{label}: invalid code '{raw}'") from None


class InvoiceType(_Code):
    STANDARD = "F1"
    SIMPLIFIED = "F2"
    SUBSTITUTE = "F3"
    RECTIFICATIVE_LAW = "R1"  # Art 80.1, 80.2 and error grounded in law
    RECTIFICATIVE_INSOLVENCY = "R2"  # Art 80.3
    RECTIFICATIVE_BAD_DEBT = "R3"  # Art 80.4
    RECTIFICATIVE_OTHER = "R4"
    RECTIFICATIVE_SIMPLIFIED = "R5"

    @property
    def is_rectificative(self) -> bool:
        return self.value.startswith("R")


class TaxType(_Code):
    IVA = "01"
    IPSI = "02"
    IGIC = "03"
    OTHER = "05"


class RegimeType(_Code):
    GENERAL = "01"
    EXPORT = "02"
    USED_GOODS = "03"
    INVESTMENT_GOLD = "04"
    TRAVEL_AGENCIES = "05"
    GROUP_OF_ENTITIES = "06"
    CASH_CRITERION = "07"
    IPSI_IGIC = "08"
    TRAVEL_AGENCY_MEDIATION = "09"
    THIRD_PARTY_COLLECTIONS = "10"
    BUSINESS_PREMISES_LEASE = "11"
    VAT_PENDING_ACCRUAL_CERTIFICATIONS = "14"
    VAT_PENDING_ACCRUAL_SUCCESSIVE = "15"
    OSS_IOSS = "17"
    EQUIVALENCE_SURCHARGE = "18"
    REAGYP = "19"
    SIMPLIFIED_REGIME = "20"


class OperationType(_Code):
    SUBJECT_NO_REVERSE = "S1"
    SUBJECT_REVERSE_CHARGE = "S2"
    NOT_SUBJECT_ARTICLES = "N1"
    NOT_SUBJECT_LOCALIZATION = "N2"

    @property
    def is_subject(self) -> bool:
        return self.value.startswith("S")


class ExemptionType(_Code):
    ART_20 = "E1"
    ART_21 = "E2"
    ART_22 = "E3"
    ART_23_24 = "E4"
    ART_25 = "E5"
    OTHER = "E6"


class IdType(_Code):
    """Identity document type for recipients without a Spanish NIF."""

    VAT_ID = "02"
    PASSPORT = "03"
    OFFICIAL_ID = "04"
    RESIDENCE_CERTIFICATE = "05"
    OTHER_DOCUMENT = "06"
    NOT_REGISTERED = "07"


class RectificationType(_Code):
    SUBSTITUTION = "S"
    DIFFERENCES = "I"


class PreviousRejection(_Code):
    NO = "N"
    YES = "S"
    NEVER_REGISTERED = "X"


class Classification(str, Enum):
    SUBJECT = "SUBJECT"
    NOT_SUBJECT = "NOT_SUBJECT"
    EXEMPT = "EXEMPT"
