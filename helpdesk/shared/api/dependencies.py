"""
Shared API Dependencies
=======================

Builds the acting Principal from gateway headers.

Authentication happens upstream; the gateway forwards the user id, the
comma-separated role names and the org unit ids the user is assigned to.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from helpdesk.access.domain import OrgUnit, Principal, RoleCatalog


def get_role_catalog(request: Request) -> RoleCatalog:
    catalog = getattr(request.app.state, "role_catalog", None)
    if catalog is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Role catalog not loaded"
        )
    return catalog


async def get_principal(
    request: Request,
    x_user_id: Optional[str] = Header(None),
    x_user_roles: str = Header(""),
    x_campus_id: Optional[str] = Header(None),
    x_college_id: Optional[str] = Header(None),
    x_department_id: Optional[str] = Header(None),
) -> Principal:
    """
    Resolve the authenticated principal.

    Raises:
        HTTPException 401: no X-User-Id header
        ValidationException: unknown role name or inconsistent scope
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )

    catalog = get_role_catalog(request)
    roles = catalog.resolve(x_user_roles.split(","))

    scope = None
    if x_campus_id:
        try:
            scope = OrgUnit.from_ids(x_campus_id, x_college_id, x_department_id)
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=str(e)
            ) from e

    return Principal(user_id=x_user_id, roles=roles, scope=scope)
