from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from ..audit.service import audit_request
from ..auth.service import require_permission
from ..core.database import get_session
from ..core.errors import PortalError
from ..models.RolePermission import AccountPermissionOverride, MatrixResponse, OverrideRequest, RolePermissionsUpdate
from ..sessions.service import Principal
from . import catalog
from .service import AuthorizationEngine, get_authorization

router = APIRouter(prefix="/admin", tags=["permissions"])

SettingsAdmin = Annotated[Principal, Depends(require_permission("system.settings"))]


def _matrix_response(engine: AuthorizationEngine) -> MatrixResponse:
    matrix = engine.matrix
    return MatrixResponse(version=matrix.version, roles=matrix.as_dict(), categories=catalog.by_category())

@router.get("/role-permissions", response_model=MatrixResponse)
async def read_role_permissions(
    principal: Annotated[Principal, Depends(require_permission("system.settings", "user.read"))],
    session: Session = Depends(get_session),
    engine: AuthorizationEngine = Depends(get_authorization),
):
    """
    The current permission matrix, its version, and the permission catalog.
    """
    engine.refresh_if_stale(session)
    return _matrix_response(engine)

@router.post("/role-permissions", response_model=MatrixResponse)
async def update_role_permissions(
    data: RolePermissionsUpdate,
    principal: SettingsAdmin,
    session: Session = Depends(get_session),
    engine: AuthorizationEngine = Depends(get_authorization),
):
    """
    Replace one role's permission set. Send ``expected_version`` to fail
    with 409 instead of overwriting a concurrent change.
    """
    try:
        engine.set_role_permissions(session, data.role, data.permissions, principal.account.id, data.expected_version)
    except PortalError as exc:
        audit_request(session, principal.account.id, "POST", "/admin/role-permissions", exc.status_code, exc.code)
        raise

    details = f"role={data.role.value} version={engine.matrix.version} permissions={','.join(sorted(set(data.permissions)))}"
    audit_request(session, principal.account.id, "POST", "/admin/role-permissions", status.HTTP_200_OK, details)
    return _matrix_response(engine)

@router.get("/accounts/{account_id}/permissions", response_model=list[AccountPermissionOverride])
async def read_account_overrides(
    account_id: int,
    principal: Annotated[Principal, Depends(require_permission("system.settings", "user.read"))],
    session: Session = Depends(get_session),
    engine: AuthorizationEngine = Depends(get_authorization),
):
    """
    Account-level grants and denials on top of the role's permissions.
    """
    return engine.overrides_for(session, account_id)

@router.put("/accounts/{account_id}/permissions/{permission_id}", response_model=AccountPermissionOverride)
async def set_account_override(
    account_id: int,
    permission_id: str,
    data: OverrideRequest,
    principal: SettingsAdmin,
    session: Session = Depends(get_session),
    engine: AuthorizationEngine = Depends(get_authorization),
):
    """
    Grant (``granted=true``) or deny (``granted=false``) one permission to one account.
    """
    override = engine.set_override(session, account_id, permission_id, data.granted, principal.account.id)
    path = f"/admin/accounts/{account_id}/permissions/{permission_id}"
    audit_request(session, principal.account.id, "PUT", path, status.HTTP_200_OK, f"granted={data.granted}")
    return override

@router.delete("/accounts/{account_id}/permissions/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def clear_account_override(
    account_id: int,
    permission_id: str,
    principal: SettingsAdmin,
    session: Session = Depends(get_session),
    engine: AuthorizationEngine = Depends(get_authorization),
):
    """
    Remove an account-level override; the role's permissions apply again.
    """
    engine.clear_override(session, account_id, permission_id)
    path = f"/admin/accounts/{account_id}/permissions/{permission_id}"
    audit_request(session, principal.account.id, "DELETE", path, status.HTTP_204_NO_CONTENT)
    return None
