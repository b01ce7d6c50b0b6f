from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from workforce.hr_import.errors import ImportConfigError

EMAIL_FIELD = "email"
DEPARTMENT_FIELDS = {"department", "department_id"}
HIRE_DATE_FIELD = "hire_date"

# Canonical profile attributes; any other mapping target is stored in custom_fields.
PROFILE_FIELDS = [
    "email",
    "first_name",
    "last_name",
    "employee_number",
    "hire_date",
    "employment_status",
]


class FieldMappingConfig(BaseModel):
    system_name: str = Field(alias="systemName")
    source_fields: List[str] = Field(default_factory=list, alias="sourceFields")
    field_mapping: Dict[str, str] = Field(alias="fieldMapping")
    required_fields: List[str] = Field(default_factory=list, alias="requiredFields")

    model_config = {"extra": "forbid", "populate_by_name": True}

    @field_validator("system_name")
    @classmethod
    def _system_name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("systemName nao pode ser vazio")
        return value

    @field_validator("source_fields")
    @classmethod
    def _source_fields_unique(cls, value: List[str]) -> List[str]:
        cleaned = [item.strip() for item in value]
        if any(not item for item in cleaned):
            raise ValueError("sourceFields nao pode conter nomes vazios")
        duplicated = sorted({item for item in cleaned if cleaned.count(item) > 1})
        if duplicated:
            raise ValueError("sourceFields duplicados: " + ", ".join(duplicated))
        return cleaned

    @field_validator("field_mapping")
    @classmethod
    def _mapping_not_blank(cls, value: Dict[str, str]) -> Dict[str, str]:
        cleaned: Dict[str, str] = {}
        for source, target in value.items():
            if not source.strip() or not target.strip():
                raise ValueError("fieldMapping nao pode conter campos vazios")
            cleaned[source] = target.strip()
        return cleaned

    @field_validator("required_fields")
    @classmethod
    def _required_strip(cls, value: List[str]) -> List[str]:
        return [item.strip() for item in value if item.strip()]

    @model_validator(mode="after")
    def _check_targets(self) -> "FieldMappingConfig":
        targets = set(self.field_mapping.values())
        if EMAIL_FIELD not in targets:
            raise ValueError("fieldMapping precisa mapear o campo email")
        unmapped = [field for field in self.required_fields if field not in targets]
        if unmapped:
            raise ValueError("requiredFields sem mapeamento: " + ", ".join(unmapped))
        return self

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


def parse_mapping_config(raw: Any) -> FieldMappingConfig:
    if isinstance(raw, FieldMappingConfig):
        return raw
    if not isinstance(raw, dict):
        raise ImportConfigError("Configuracao de importacao invalida")
    try:
        return FieldMappingConfig.model_validate(raw)
    except ValidationError as exc:
        messages = "; ".join(err["msg"] for err in exc.errors())
        raise ImportConfigError(f"Configuracao de importacao invalida: {messages}") from exc


def is_custom_field(canonical: str) -> bool:
    return canonical not in PROFILE_FIELDS and canonical not in DEPARTMENT_FIELDS


def normalize_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    raw = value if isinstance(value, str) else str(value)
    raw = raw.strip()
    return raw or None


def normalize_email(value: str) -> str:
    return value.strip().lower()
