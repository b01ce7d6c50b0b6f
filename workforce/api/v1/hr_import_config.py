from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from workforce.core.security import require_admin
from workforce.core.tenancy import TenantContext
from workforce.db.session import get_db
from workforce.hr_import.config import PROFILE_FIELDS, parse_mapping_config
from workforce.hr_import.errors import ImportConfigError
from workforce.hr_import.service import load_tenant_config, save_tenant_config

router = APIRouter(prefix="/hr-import-config", tags=["HR Import"])


@router.get("")
def get_import_config(db=Depends(get_db), tenant: TenantContext = Depends(require_admin)):
    try:
        config = load_tenant_config(db, tenant.tenant_id)
    except ImportConfigError as exc:
        raise HTTPException(status_code=422, detail=f"Configuracao armazenada invalida: {exc}")
    return {
        "config": config.to_wire() if config else None,
        "profile_fields": PROFILE_FIELDS,
    }


@router.post("")
def save_import_config(
    payload: Dict[str, Any],
    db=Depends(get_db),
    tenant: TenantContext = Depends(require_admin),
):
    try:
        config = parse_mapping_config(payload)
    except ImportConfigError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    save_tenant_config(db, tenant, config)
    return {"config": config.to_wire(), "message": "Configuracao salva"}
