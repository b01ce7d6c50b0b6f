import logging
import re
import secrets
from dataclasses import dataclass
from typing import Optional

from firebase_admin import auth, exceptions

from workforce.core.config import settings
from workforce.core.firebase import get_firebase_app
from workforce.hr_import.errors import IdentityProvisioningError

logger = logging.getLogger("workforce.hr_import.identity")

EMPLOYEE_ROLE = "employee"


def is_valid_email(value: str) -> bool:
    return bool(re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", value))


def generate_temporary_password() -> str:
    return secrets.token_urlsafe(12)


@dataclass
class ProvisionedIdentity:
    external_uid: Optional[str]
    created: bool


class LocalIdentityProvider:
    """Identities live only in the users table; nothing external to call.

    Every provider exposes ``provision(email, tenant_id, password)`` returning a
    ``ProvisionedIdentity``. Faults that concern only this e-mail must surface
    as ``IdentityProvisioningError`` so the batch records the row and moves on.
    The local provider has no account store, so it ignores the tenant and the
    password and only checks the address.
    """

    name = "local"

    def provision(self, email: str, tenant_id: str, password: str) -> ProvisionedIdentity:
        if not is_valid_email(email):
            raise IdentityProvisioningError(f"E-mail invalido: {email}", email=email)
        return ProvisionedIdentity(external_uid=None, created=True)


class FirebaseIdentityProvider:
    name = "firebase"

    def __init__(self, app=None) -> None:
        self._app = app

    def _get_app(self):
        return self._app or get_firebase_app()

    def provision(self, email: str, tenant_id: str, password: str) -> ProvisionedIdentity:
        app = self._get_app()
        try:
            record = auth.create_user(email=email, password=password, email_verified=True, app=app)
        except auth.EmailAlreadyExistsError:
            record = self._existing_user(email, app)
            owner = (record.custom_claims or {}).get("tenant_id")
            if owner and owner != tenant_id:
                raise IdentityProvisioningError(f"Usuario {email} pertence a outro tenant", email=email)
            if owner:
                logger.info("firebase identity reused email=%s uid=%s", email, record.uid)
                return ProvisionedIdentity(external_uid=record.uid, created=False)
            # Account left without claims by an earlier failed import; finish it here.
            logger.info("firebase identity adopted email=%s uid=%s", email, record.uid)
        except (ValueError, exceptions.FirebaseError) as exc:
            raise IdentityProvisioningError(f"Falha ao criar usuario {email}: {exc}", email=email) from exc

        self._set_claims(record.uid, email, tenant_id, app)
        return ProvisionedIdentity(external_uid=record.uid, created=True)

    def _existing_user(self, email: str, app):
        try:
            return auth.get_user_by_email(email, app=app)
        except (ValueError, exceptions.FirebaseError) as exc:
            raise IdentityProvisioningError(f"Falha ao consultar usuario {email}: {exc}", email=email) from exc

    def _set_claims(self, uid: str, email: str, tenant_id: str, app) -> None:
        claims = {"tenant_id": tenant_id, "role": EMPLOYEE_ROLE}
        try:
            auth.set_custom_user_claims(uid, claims, app=app)
        except (ValueError, exceptions.FirebaseError) as exc:
            raise IdentityProvisioningError(f"Falha ao definir claims de {email}: {exc}", email=email) from exc


def get_identity_provider(name: Optional[str] = None):
    selected = (name or settings.HR_IMPORT_IDENTITY_PROVIDER or "local").lower()
    if selected == "firebase":
        return FirebaseIdentityProvider()
    if selected == "local":
        return LocalIdentityProvider()
    raise ValueError(f"Provedor de identidade desconhecido: {selected}")
