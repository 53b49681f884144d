"""
api/routes/v1/employees.py -- Employee directory endpoints.

Routes:
  GET /api/v1/employees/me  -- requires an Employee access token
  GET /api/v1/employees     -- requires an Employee access token with role admin or hr

Auth policy is enforced by the access guard dependency; handlers only read.
The listing is capped at 100 records.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from api.models import EmployeeListResponse, EmployeeMeResponse, PrincipalResponse
from api.routes.v1.auth import get_auth_service
from auth.dependencies import require_principal
from auth.kinds import EMPLOYEE

_LIST_LIMIT = 100

router = APIRouter()


@router.get("/employees/me", response_model=EmployeeMeResponse)
def me(request: Request, claims: dict[str, Any] = Depends(require_principal(EMPLOYEE))) -> EmployeeMeResponse:
    """Return the calling employee's profile (404 if the account no longer exists)."""
    employee = get_auth_service(request, EMPLOYEE).whoami(claims)
    return EmployeeMeResponse(employee=PrincipalResponse.from_public(employee))


@router.get(
    "/employees",
    response_model=EmployeeListResponse,
    dependencies=[Depends(require_principal(EMPLOYEE, ("admin", "hr")))],
)
def list_employees(request: Request) -> EmployeeListResponse:
    """List employees. Admin / HR only."""
    employees = get_auth_service(request, EMPLOYEE).list_principals(limit=_LIST_LIMIT)
    return EmployeeListResponse(employees=[PrincipalResponse.from_public(e) for e in employees])
