from dataclasses import dataclass
from typing import List, Optional


@dataclass
class RowError:
    row: int
    message: str
    email: Optional[str] = None

    def as_dict(self) -> dict:
        payload = {"row": self.row, "message": self.message}
        if self.email:
            payload["email"] = self.email
        return payload


class HRImportError(Exception):
    pass


class RowFailure(HRImportError):
    """Row-scoped failure: recorded against the row, never aborts the batch."""

    def __init__(self, message: str, email: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.email = email


class ValidationError(RowFailure):
    pass


class MissingRequiredField(ValidationError):
    def __init__(self, missing: List[str], email: Optional[str] = None) -> None:
        self.missing = list(missing)
        super().__init__("Campo obrigatorio ausente: " + ", ".join(self.missing), email=email)


class IdentityProvisioningError(RowFailure):
    pass


class ProfilePersistenceError(RowFailure):
    pass


class ImportConfigError(HRImportError):
    pass


class EmptyImport(HRImportError):
    pass


class JobNotFound(HRImportError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} nao encontrado")
        self.job_id = job_id


class AlreadyProcessing(HRImportError):
    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(f"Job ja esta {status}")
        self.job_id = job_id
        self.status = status


class JobClaimLost(HRImportError):
    pass


class CatastrophicFailure(HRImportError):
    """Fault that escaped the per-row boundary; carries the partial batch result."""

    def __init__(self, message: str, partial=None) -> None:
        super().__init__(message)
        self.message = message
        self.partial = partial
