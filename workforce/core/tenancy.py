from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TenantContext:
    """Caller identity threaded explicitly through every import operation."""

    tenant_id: str
    user_id: Optional[str] = None
    role: str = "admin"

    @classmethod
    def from_user(cls, user) -> "TenantContext":
        return cls(tenant_id=user.tenant_id, user_id=user.id, role=user.role)
