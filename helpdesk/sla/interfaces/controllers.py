"""
SLA Controllers (API Routes)
============================

Operational endpoints: trigger an escalation scan on demand and inspect
the SLA policy in force.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from helpdesk.access.domain import PermissionModel, Principal
from helpdesk.core import Unauthorized
from helpdesk.shared.api.dependencies import get_principal
from helpdesk.sla.application import EscalationScheduler, ScanReportResponse, SlaPolicyResponse
from helpdesk.sla.domain import ISLAPolicyProvider

router = APIRouter(tags=["SLA Escalation"])

SCAN_CAPABILITY = "system:config"


def get_escalation_scheduler(request: Request) -> EscalationScheduler:
    scheduler = getattr(request.app.state, "escalation_scheduler", None)
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Escalation scheduler not initialized"
        )
    return scheduler


def get_policy_provider(request: Request) -> ISLAPolicyProvider:
    provider = getattr(request.app.state, "policy_provider", None)
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="SLA policy not loaded"
        )
    return provider


@router.post(
    "/escalations/scan",
    response_model=ScanReportResponse,
    summary="Run an escalation scan now",
    description="Runs the same pass the background scheduler runs. Requires `system:config`."
)
async def run_escalation_scan(
    actor: Principal = Depends(get_principal),
    scheduler: EscalationScheduler = Depends(get_escalation_scheduler),
):
    if not PermissionModel.has_capability(actor.roles, SCAN_CAPABILITY):
        raise Unauthorized(actor.user_id, SCAN_CAPABILITY)
    report = await scheduler.run_once()
    return ScanReportResponse.from_report(report)


@router.get(
    "/sla/policy",
    response_model=SlaPolicyResponse,
    summary="SLA policy in force"
)
async def get_sla_policy(
    actor: Principal = Depends(get_principal),
    provider: ISLAPolicyProvider = Depends(get_policy_provider),
):
    return SlaPolicyResponse.from_policy(provider.get_policy())
