import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Tuple

from dateutil import parser as date_parser
from sqlalchemy import func
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from workforce.core.security import get_password_hash
from workforce.core.tenancy import TenantContext
from workforce.db import models
from workforce.hr_import.config import (
    DEPARTMENT_FIELDS,
    EMAIL_FIELD,
    HIRE_DATE_FIELD,
    is_custom_field,
    normalize_email,
)
from workforce.hr_import.errors import IdentityProvisioningError, ProfilePersistenceError
from workforce.hr_import.identity import EMPLOYEE_ROLE, LocalIdentityProvider, generate_temporary_password
from workforce.hr_import.validator import NormalizedRecord

logger = logging.getLogger("workforce.hr_import.resolver")


@dataclass
class ResolveOutcome:
    email: str
    user_id: str
    profile_id: str
    auth_created: bool


def match_department(name: str, departments: Iterable[Mapping[str, str]]) -> Optional[str]:
    lowered = name.strip().lower()
    for dept in departments:
        if (dept.get("name") or "").strip().lower() == lowered:
            return dept.get("id")
    return None


def _parse_hire_date(value: str, email: str):
    try:
        return date_parser.parse(value).date()
    except (ValueError, OverflowError) as exc:
        raise ProfilePersistenceError(f"Data de admissao invalida: {value}", email=email) from exc


class IdentityResolver:
    def __init__(self, db: Session, provider=None) -> None:
        self.db = db
        self.provider = provider or LocalIdentityProvider()

    def resolve(
        self,
        record: NormalizedRecord,
        tenant: TenantContext,
        departments: Iterable[Mapping[str, str]] = (),
    ) -> ResolveOutcome:
        email = normalize_email(record.email or "")
        if not email:
            raise IdentityProvisioningError("E-mail obrigatorio para criar o usuario")

        # Parse everything before any write so a bad row leaves no orphan identity.
        values, custom = self._profile_values(record, list(departments), email)

        auth_created = False
        user = self._find_user(tenant.tenant_id, email)
        try:
            if user is None:
                password = generate_temporary_password()
                identity = self.provider.provision(email, tenant.tenant_id, password)
                user = models.User(
                    tenant_id=tenant.tenant_id,
                    email=email,
                    password_hash=get_password_hash(password),
                    role=EMPLOYEE_ROLE,
                    status="active",
                    external_uid=identity.external_uid,
                    must_reset_password=True,
                )
                self.db.add(user)
                self.db.flush()
                auth_created = identity.created

            profile = self._find_profile(tenant.tenant_id, email)
            if profile is None:
                profile = models.Profile(
                    tenant_id=tenant.tenant_id,
                    user_id=user.id,
                    email=email,
                    custom_fields=custom or None,
                    **values,
                )
                self.db.add(profile)
            else:
                for key, value in values.items():
                    setattr(profile, key, value)
                profile.user_id = user.id
                if custom:
                    profile.custom_fields = {**(profile.custom_fields or {}), **custom}
            self.db.commit()
        except OperationalError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise ProfilePersistenceError(
                f"Falha ao gravar perfil de {email}: {exc.__class__.__name__}", email=email
            ) from exc

        return ResolveOutcome(email=email, user_id=user.id, profile_id=profile.id, auth_created=auth_created)

    def _profile_values(
        self, record: NormalizedRecord, departments: list, email: str
    ) -> Tuple[Dict[str, object], Dict[str, str]]:
        values: Dict[str, object] = {}
        custom: Dict[str, str] = {}
        for name, value in record.fields.items():
            if name == EMAIL_FIELD:
                continue
            if name in DEPARTMENT_FIELDS:
                department_id = match_department(value, departments)
                if department_id:
                    values["department_id"] = department_id
                else:
                    logger.info("department not found name=%s email=%s", value, email)
            elif name == HIRE_DATE_FIELD:
                values["hire_date"] = _parse_hire_date(value, email)
            elif is_custom_field(name):
                custom[name] = value
            else:
                values[name] = value
        for source, value in record.extras.items():
            custom.setdefault(source, value)
        return values, custom

    def _find_user(self, tenant_id: str, email: str) -> Optional[models.User]:
        return (
            self.db.query(models.User)
            .filter(models.User.tenant_id == tenant_id, func.lower(models.User.email) == email)
            .first()
        )

    def _find_profile(self, tenant_id: str, email: str) -> Optional[models.Profile]:
        return (
            self.db.query(models.Profile)
            .filter(models.Profile.tenant_id == tenant_id, func.lower(models.Profile.email) == email)
            .first()
        )
