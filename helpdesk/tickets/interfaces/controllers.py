"""
Ticket Controllers (API Routes)
===============================

FastAPI routes for filing tickets, transitions, escalation, reassignment,
the message thread, rating and the timeline.

Controllers delegate to application services; domain exceptions are
mapped to HTTP responses by the shared exception handler.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status

from helpdesk.access.domain import OrgUnit, Principal
from helpdesk.core import ValidationException
from helpdesk.intake.application import TicketIntakeService
from helpdesk.shared.api.dependencies import get_principal
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.tickets.application import (
    EscalateRequest,
    IntakeResponse,
    MessageCreateRequest,
    MessageResponse,
    RateTicketRequest,
    ReassignRequest,
    TicketCreateRequest,
    TicketResponse,
    TicketService,
    TimelineEntryResponse,
    TransitionRequest,
    TransitionResponse,
)
from helpdesk.tickets.domain import TransitionResult

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Tickets"])


# ========== Dependencies ==========

def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ticket service not initialized"
        )
    return service


def get_intake_service(request: Request) -> TicketIntakeService:
    service = getattr(request.app.state, "intake_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Intake service not initialized"
        )
    return service


def _transition_response(
    service: TicketService,
    result: TransitionResult,
    actor: Principal
) -> TransitionResponse:
    return TransitionResponse(
        ticket=TicketResponse.from_entity(
            result.ticket, service.can_see_requester(result.ticket, actor)
        ),
        changed=result.changed,
        events=[e.event_type for e in result.events],
    )


def _ticket_scope(payload: TicketCreateRequest, actor: Principal) -> OrgUnit:
    if payload.campus_id:
        try:
            return OrgUnit.from_ids(payload.campus_id, payload.college_id, payload.department_id)
        except ValueError as e:
            raise ValidationException(str(e), {"field": "scope"}) from e
    if actor.scope is None:
        raise ValidationException(
            "Ticket scope required: supply campus_id or an X-Campus-Id header",
            {"field": "campus_id"}
        )
    return actor.scope


# ========== Route Handlers ==========

@router.post(
    "",
    response_model=IntakeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="File a ticket",
    description="""
    File a new ticket. The text is embedded and compared against open
    tickets of the same department; a match scoring at least the similarity
    threshold links the new ticket to the existing one instead of starting
    a fresh SLA clock.

    Duplicate detection fails open: if the embedding provider is
    unavailable the ticket is still created (`duplicate_check_performed`
    is false).
    """,
    responses={
        201: {"description": "Ticket created or linked as duplicate"},
        403: {"description": "Principal lacks ticket:create"},
        422: {"description": "Invalid title, description or scope"},
    }
)
async def create_ticket(
    request: Request,
    payload: TicketCreateRequest,
    actor: Principal = Depends(get_principal),
    intake: TicketIntakeService = Depends(get_intake_service),
    service: TicketService = Depends(get_ticket_service),
):
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    logger.info(
        "Filing ticket",
        extra={"correlation_id": correlation_id, "actor_id": actor.user_id, "category": payload.category.value}
    )

    result = await intake.submit(
        actor=actor,
        title=payload.title,
        description=payload.description,
        category=payload.category,
        priority=payload.priority,
        scope=_ticket_scope(payload, actor),
        urgency=payload.urgency,
        tags=payload.tags,
        is_anonymous=payload.is_anonymous,
    )

    return IntakeResponse(
        ticket=TicketResponse.from_entity(result.ticket, service.can_see_requester(result.ticket, actor)),
        duplicate_of=result.duplicate_of,
        similarity=result.similarity,
        duplicate_check_performed=result.duplicate_check_performed,
    )


@router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get ticket",
    responses={403: {"description": "Not visible to this principal"}, 404: {"description": "Unknown ticket"}}
)
async def get_ticket(
    ticket_id: str,
    actor: Principal = Depends(get_principal),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = await service.get_ticket(ticket_id, actor)
    return TicketResponse.from_entity(ticket, service.can_see_requester(ticket, actor))


@router.post(
    "/{ticket_id}/transitions",
    response_model=TransitionResponse,
    summary="Apply a lifecycle transition",
    description="""
    Actions: `START`, `REQUEST_INFO`, `ESCALATE`, `ASSIGN`, `RESOLVE`,
    `CLOSE`, `REOPEN`, `REJECT`. `REQUESTER_REPLY` is system-only and is
    triggered by the requester posting a message.

    Errors: 403 missing capability or out of scope, 409 not allowed from
    the current status (or lost a concurrent update twice), 410 reopen
    window elapsed.
    """
)
async def apply_transition(
    ticket_id: str,
    payload: TransitionRequest,
    actor: Principal = Depends(get_principal),
    service: TicketService = Depends(get_ticket_service),
):
    result = await service.transition(
        ticket_id, payload.action, actor,
        assignee_id=payload.assignee_id,
        reason=payload.reason,
    )
    return _transition_response(service, result, actor)


@router.post(
    "/{ticket_id}/escalate",
    response_model=TransitionResponse,
    summary="Escalate manually",
    description="Moves the ticket one authority level up. At the top level nothing changes and `MaxEscalationReached` is reported."
)
async def escalate_ticket(
    ticket_id: str,
    payload: EscalateRequest,
    actor: Principal = Depends(get_principal),
    service: TicketService = Depends(get_ticket_service),
):
    result = await service.escalate(ticket_id, actor, payload.reason)
    return _transition_response(service, result, actor)


@router.post(
    "/{ticket_id}/reassign",
    response_model=TransitionResponse,
    summary="Reassign within the current level"
)
async def reassign_ticket(
    ticket_id: str,
    payload: ReassignRequest,
    actor: Principal = Depends(get_principal),
    service: TicketService = Depends(get_ticket_service),
):
    result = await service.reassign(ticket_id, actor, payload.assignee_id, payload.reason)
    return _transition_response(service, result, actor)


@router.post(
    "/{ticket_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Post a message",
    description="A requester reply on a PENDING_INFO ticket moves it back to IN_PROGRESS. Internal notes are staff-only."
)
async def post_message(
    ticket_id: str,
    payload: MessageCreateRequest,
    actor: Principal = Depends(get_principal),
    service: TicketService = Depends(get_ticket_service),
):
    message = await service.post_message(
        ticket_id, actor, payload.body,
        is_internal=payload.is_internal,
        attachment_ids=payload.attachment_ids,
    )
    return MessageResponse.from_entity(message)


@router.get(
    "/{ticket_id}/messages",
    response_model=List[MessageResponse],
    summary="List visible messages"
)
async def list_messages(
    ticket_id: str,
    actor: Principal = Depends(get_principal),
    service: TicketService = Depends(get_ticket_service),
):
    messages = await service.list_messages(ticket_id, actor)
    return [MessageResponse.from_entity(m) for m in messages]


@router.get(
    "/{ticket_id}/duplicates",
    response_model=List[TicketResponse],
    summary="List tickets linked as duplicates of this one"
)
async def list_duplicates(
    ticket_id: str,
    actor: Principal = Depends(get_principal),
    service: TicketService = Depends(get_ticket_service),
):
    duplicates = await service.list_duplicates(ticket_id, actor)
    return [TicketResponse.from_entity(t, service.can_see_requester(t, actor)) for t in duplicates]


@router.post(
    "/{ticket_id}/rating",
    response_model=TransitionResponse,
    summary="Rate a resolved ticket",
    description="Only the requester may rate, once, after the ticket is RESOLVED or CLOSED."
)
async def rate_ticket(
    ticket_id: str,
    payload: RateTicketRequest,
    actor: Principal = Depends(get_principal),
    service: TicketService = Depends(get_ticket_service),
):
    result = await service.rate(ticket_id, actor, payload.rating, payload.comment)
    return _transition_response(service, result, actor)


@router.get(
    "/{ticket_id}/timeline",
    response_model=List[TimelineEntryResponse],
    summary="Chronological ticket history"
)
async def get_timeline(
    ticket_id: str,
    actor: Principal = Depends(get_principal),
    service: TicketService = Depends(get_ticket_service),
):
    entries = await service.get_timeline(ticket_id, actor)
    return [TimelineEntryResponse.from_entry(e) for e in entries]
