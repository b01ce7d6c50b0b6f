from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from workforce.hr_import.config import EMAIL_FIELD, FieldMappingConfig, normalize_text
from workforce.hr_import.errors import MissingRequiredField


@dataclass
class NormalizedRecord:
    fields: Dict[str, str]
    extras: Dict[str, str] = field(default_factory=dict)

    @property
    def email(self) -> Optional[str]:
        return self.fields.get(EMAIL_FIELD)


def validate_row(row: Mapping[str, Any], config: FieldMappingConfig) -> NormalizedRecord:
    """Apply the field mapping to one raw row.

    Empty or absent source values never overwrite a value already applied, so
    when two source columns feed the same canonical field the last non-empty
    one in mapping order wins. Raises ``MissingRequiredField`` listing every
    required canonical field left unset.
    """
    fields: Dict[str, str] = {}
    for source, canonical in config.field_mapping.items():
        value = normalize_text(row.get(source))
        if value is None:
            continue
        fields[canonical] = value

    missing = [name for name in config.required_fields if name not in fields]
    if missing:
        raise MissingRequiredField(missing, email=fields.get(EMAIL_FIELD))

    extras: Dict[str, str] = {}
    for source, raw in row.items():
        if source in config.field_mapping:
            continue
        value = normalize_text(raw)
        if value is not None:
            extras[source] = value

    return NormalizedRecord(fields=fields, extras=extras)
