from __future__ import annotations

from dataclasses import dataclass

from verifactu.config import HOME_COUNTRY
from verifactu.models.codes import IdType
from verifactu.services.exceptions import ValidationError
from verifactu.utils.validators import ensure, validate_country, validate_tax_id, validate_text


@dataclass(frozen=True)
class Recipient:
    """Invoice recipient (destinatario).

    Carries either a Spanish ``tax_id`` or a foreign identity
    (``country``, ``id_type``, ``foreign_id``), never both.
    """

    name: str
    country: str = HOME_COUNTRY
    tax_id: str | None = None
    id_type: IdType | None = None
    foreign_id: str | None = None

    def __post_init__(self) -> None:
        has_domestic = bool(self.tax_id)
        has_foreign = self.id_type is not None or bool(self.foreign_id)
        if has_domestic and has_foreign:
            raise ValidationError(f"Recipient '{self.name}': both NIF and foreign id given")
        if not has_domestic and not has_foreign:
            raise ValidationError(f"Recipient '{self.name}': NIF or foreign id required")
        if has_foreign and (self.id_type is None or not self.foreign_id):
            raise ValidationError(f"Recipient '{self.name}': foreign id needs id_type and id")

    @property
    def is_foreign_identity(self) -> bool:
        return self.id_type is not None

    @classmethod
    def from_dict(cls, d: dict) -> Recipient:
        """Create a Recipient from a dict.

        A recipient with ``id_type`` is a foreign identity; its raw id is read
        from ``id`` (or ``tax_id`` for rows that store it there). A recipient
        outside the home country with only ``tax_id`` defaults to id type 02
        (NIF-IVA).
        """
        name = ensure(validate_text, d.get("name"), "NombreRazon", 120)
        country = ensure(validate_country, d.get("country") or HOME_COUNTRY)
        id_type = d.get("id_type")
        if not id_type and country != HOME_COUNTRY and d.get("tax_id") and not d.get("id"):
            id_type = IdType.VAT_ID.value
        if id_type:
            raw_id = str(d.get("id") or d.get("tax_id") or "").strip()
            return cls(
                name=name,
                country=country,
                id_type=IdType.parse(str(id_type).zfill(2), "IDType"),
                foreign_id=raw_id,
            )
        return cls(name=name, country=country, tax_id=ensure(validate_tax_id, d.get("tax_id")))
