"""
api/routes/v1/roles.py -- Role management REST endpoints.

Routes:
  GET    /api/v1/roles          -- list roles, optional ?enabled= filter (requires auth)
  GET    /api/v1/roles/{id}     -- one role or null (requires auth)
  POST   /api/v1/roles          -- create role (admin only)
  PUT    /api/v1/roles/{id}     -- update fields and replace members (admin only)
  DELETE /api/v1/roles/{id}     -- soft-delete role (admin only)

Protected system roles answer 401 {"message": "<title> cannot be ..."} for
disable/delete attempts, the same envelope the auth flows use.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.models import ErrorDetail, RoleCreate, RoleResponse, RoleUpdate
from auth.dependencies import get_current_user, require_admin
from auth.errors import NotFoundError, ProtectedRoleError
from auth.models import Role, User
from auth.roles import RoleService

logger = logging.getLogger("authgate.api.roles")

# Auth policy:
# - GET    /api/v1/roles, /roles/{id}:  requires auth (get_current_user)
# - POST   /api/v1/roles:               requires admin (require_admin)
# - PUT    /api/v1/roles/{id}:          requires admin (require_admin)
# - DELETE /api/v1/roles/{id}:          requires admin (require_admin)
router = APIRouter()


def _roles(request: Request) -> RoleService:
    return request.app.state.role_service


def _not_found(role_id: int) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(code="not_found", message=f"Role {role_id} not found.").model_dump(),
    )


@router.get("/roles", response_model=list[RoleResponse])
async def list_roles(
    request: Request,
    enabled: Optional[bool] = None,
    current_user: User = Depends(get_current_user),
) -> list[RoleResponse]:
    service = _roles(request)
    roles = await service.list() if enabled is None else await service.list_enabled(enabled)
    return [RoleResponse.from_role(r) for r in roles]


@router.get("/roles/{role_id}", response_model=Optional[RoleResponse])
async def get_role(
    request: Request,
    role_id: int,
    current_user: User = Depends(get_current_user),
) -> Optional[RoleResponse]:
    role = await _roles(request).get_by_id(role_id)
    return RoleResponse.from_role(role) if role else None


@router.post("/roles", response_model=RoleResponse, status_code=201)
async def create_role(
    request: Request,
    body: RoleCreate,
    current_user: User = Depends(require_admin),
) -> RoleResponse:
    try:
        role = await _roles(request).create(Role(title=body.title, description=body.description))
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="conflict", message=f"Role '{body.title}' already exists.").model_dump(),
        )
    logger.info("Role %s created by user %s", role.id, current_user.id)
    return RoleResponse.from_role(role)


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    request: Request,
    role_id: int,
    body: RoleUpdate,
    current_user: User = Depends(require_admin),
):
    service = _roles(request)
    current = await service.get_by_id(role_id)
    if current is None or current.is_removed:
        raise _not_found(role_id)
    changed = Role(
        id=role_id,
        title=body.title,
        description=body.description,
        enabled=body.enabled,
        lifecycle=current.lifecycle,
        users=body.users,
    )
    try:
        role = await service.update(changed)
    except ProtectedRoleError as exc:
        return JSONResponse(status_code=401, content={"message": exc.message})
    except NotFoundError:
        raise _not_found(role_id)
    except IntegrityError:
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="conflict", message=f"Role '{body.title}' already exists.").model_dump(),
        )
    return RoleResponse.from_role(role)


@router.delete("/roles/{role_id}", response_model=RoleResponse)
async def delete_role(
    request: Request,
    role_id: int,
    current_user: User = Depends(require_admin),
):
    service = _roles(request)
    current = await service.get_by_id(role_id)
    if current is None or current.is_removed:
        raise _not_found(role_id)
    try:
        role = await service.remove(current)
    except ProtectedRoleError as exc:
        return JSONResponse(status_code=401, content={"message": exc.message})
    logger.info("Role %s removed by user %s", role_id, current_user.id)
    return RoleResponse.from_role(role)
