from datetime import timedelta

import pytest

from helpdesk.access.domain import Principal
from helpdesk.config import (
    EscalationTrigger, EscalationUrgency, Priority, TicketCategory, TicketStatus,
)
from helpdesk.core import InvalidTransition, TransitionExpired, Unauthorized, ValidationException
from helpdesk.tickets.domain import (
    MESSAGE_MAX_LENGTH, RATING_COMMENT_MAX_LENGTH,
    DuplicateLinked, EscalationEvent, MaxEscalationReached, MessagePosted,
    TicketAction, TicketCreated, TicketRated, TicketStatusChanged,
    build_timeline, role_for_level,
)

DESCRIPTION = "The hostel water heater on floor two has been broken since Monday."
SYSTEM = Principal.system()


def _create(state_machine, actor, scope, now, priority=Priority.HIGH, ticket_id="TKT-000001", **kwargs):
    result = state_machine.create(
        ticket_id, actor, "Water heater broken", DESCRIPTION,
        TicketCategory.HOSTEL, priority, scope, now=now, **kwargs
    )
    return result.ticket


def _sla_escalate(state_machine, ticket):
    """Escalate at the moment the current deadline elapses."""
    return state_machine.escalate(
        ticket, SYSTEM, EscalationTrigger.SLA_BREACH, "SLA breach", ticket.deadline
    ).ticket


def _at_level(state_machine, ticket, level):
    for _ in range(level):
        ticket = _sla_escalate(state_machine, ticket)
    return ticket


# ========== Creation ==========

def test_create_starts_sla_clock(state_machine, student, org, clock):
    result = state_machine.create(
        "TKT-000001", student, "Water heater broken", DESCRIPTION,
        TicketCategory.HOSTEL, Priority.HIGH, org.d1, now=clock.now
    )
    ticket = result.ticket
    assert ticket.status == TicketStatus.OPEN
    assert ticket.escalation_level == 0
    assert ticket.authority == "DEPARTMENT"
    assert ticket.deadline == clock.now + timedelta(hours=12)
    assert [type(e) for e in result.events] == [TicketCreated]


def test_create_with_explicit_urgency(state_machine, student, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now, priority=Priority.LOW,
                     urgency=EscalationUrgency.URGENT)
    assert ticket.urgency == EscalationUrgency.URGENT
    assert ticket.deadline == clock.now + timedelta(hours=2)


def test_create_rejects_short_title(state_machine, student, org, clock):
    with pytest.raises(ValidationException):
        state_machine.create("TKT-000001", student, "Hi", DESCRIPTION,
                             TicketCategory.HOSTEL, Priority.LOW, org.d1, now=clock.now)


def test_create_rejects_short_description(state_machine, student, org, clock):
    with pytest.raises(ValidationException):
        state_machine.create("TKT-000001", student, "Water heater broken", "   broken   ",
                             TicketCategory.HOSTEL, Priority.LOW, org.d1, now=clock.now)


def test_create_requires_capability(state_machine, make_principal, org, clock):
    warden = make_principal("warden-1", "HOSTEL_WARDEN", scope=org.d1)
    with pytest.raises(Unauthorized):
        _create(state_machine, warden, org.d1, clock.now)


# ========== Transitions ==========

def test_start_assigns_actor_and_refreshes_deadline(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    later = clock.now + timedelta(hours=3)
    result = state_machine.apply(ticket, TicketAction.START, hod, later)
    assert result.ticket.status == TicketStatus.IN_PROGRESS
    assert result.ticket.assignee_id == "hod-1"
    assert result.ticket.deadline == later + timedelta(hours=12)
    event = result.events[0]
    assert isinstance(event, TicketStatusChanged)
    assert (event.from_status, event.to_status) == (TicketStatus.OPEN, TicketStatus.IN_PROGRESS)


def test_transition_does_not_touch_input(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    state_machine.apply(ticket, TicketAction.START, hod, clock.now)
    assert ticket.status == TicketStatus.OPEN
    assert ticket.assignee_id is None


def test_student_cannot_start(state_machine, student, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    with pytest.raises(Unauthorized):
        state_machine.apply(ticket, TicketAction.START, student, clock.now)


def test_authorization_checked_before_source_state(state_machine, student, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    with pytest.raises(Unauthorized):
        state_machine.apply(ticket, TicketAction.CLOSE, student, clock.now)


def test_resolve_from_open_is_invalid(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    with pytest.raises(InvalidTransition):
        state_machine.apply(ticket, TicketAction.RESOLVE, hod, clock.now)


def test_hod_of_other_department_is_unauthorized(state_machine, student, make_principal, org, clock):
    other_hod = make_principal("hod-2", "HOD", scope=org.d2)
    ticket = _create(state_machine, student, org.d1, clock.now)
    with pytest.raises(Unauthorized):
        state_machine.apply(ticket, TicketAction.START, other_hod, clock.now)


def test_resolve_then_close(state_machine, student, hod, campus_admin, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    ticket = state_machine.apply(ticket, TicketAction.START, hod, clock.now).ticket
    resolved = state_machine.apply(ticket, TicketAction.RESOLVE, hod, clock.now).ticket
    assert resolved.status == TicketStatus.RESOLVED
    assert resolved.deadline is None
    assert resolved.resolved_at == clock.now

    with pytest.raises(Unauthorized):
        state_machine.apply(resolved, TicketAction.CLOSE, hod, clock.now)

    closed = state_machine.apply(resolved, TicketAction.CLOSE, campus_admin, clock.now).ticket
    assert closed.status == TicketStatus.CLOSED
    assert closed.is_terminal
    assert closed.closed_at == clock.now


def test_reject_from_open(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    rejected = state_machine.apply(ticket, TicketAction.REJECT, hod, clock.now, reason="spam").ticket
    assert rejected.status == TicketStatus.REJECTED
    assert rejected.deadline is None


def test_no_transition_leaves_closed(state_machine, student, hod, campus_admin, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    ticket = state_machine.apply(ticket, TicketAction.REJECT, hod, clock.now).ticket
    for action in TicketAction:
        if action == TicketAction.REQUESTER_REPLY:
            continue
        with pytest.raises(InvalidTransition):
            state_machine.apply(ticket, action, campus_admin, clock.now)


def _resolved(state_machine, student, hod, org, now):
    ticket = _create(state_machine, student, org.d1, now)
    ticket = state_machine.apply(ticket, TicketAction.START, hod, now).ticket
    return state_machine.apply(ticket, TicketAction.RESOLVE, hod, now).ticket


def test_reopen_inside_window(state_machine, student, hod, campus_admin, org, clock):
    resolved = _resolved(state_machine, student, hod, org, clock.now)
    later = clock.now + timedelta(hours=167)
    reopened = state_machine.apply(resolved, TicketAction.REOPEN, campus_admin, later).ticket
    assert reopened.status == TicketStatus.IN_PROGRESS
    assert reopened.resolved_at is None
    assert reopened.deadline == later + timedelta(hours=12)


def test_reopen_after_window_expires(state_machine, student, hod, campus_admin, org, clock):
    resolved = _resolved(state_machine, student, hod, org, clock.now)
    with pytest.raises(TransitionExpired):
        state_machine.apply(resolved, TicketAction.REOPEN, campus_admin, clock.now + timedelta(hours=169))


def test_request_info_keeps_deadline(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    pending = state_machine.apply(ticket, TicketAction.REQUEST_INFO, hod, clock.now + timedelta(hours=1)).ticket
    assert pending.status == TicketStatus.PENDING_INFO
    assert pending.deadline == ticket.deadline


def test_requester_reply_is_system_only(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    pending = state_machine.apply(ticket, TicketAction.REQUEST_INFO, hod, clock.now).ticket
    with pytest.raises(Unauthorized):
        state_machine.apply(pending, TicketAction.REQUESTER_REPLY, hod, clock.now)
    resumed = state_machine.apply(pending, TicketAction.REQUESTER_REPLY, SYSTEM, clock.now).ticket
    assert resumed.status == TicketStatus.IN_PROGRESS


def test_assign_from_escalated(state_machine, student, campus_admin, org, clock):
    ticket = _at_level(state_machine, _create(state_machine, student, org.d1, clock.now), 1)
    assigned = state_machine.apply(
        ticket, TicketAction.ASSIGN, campus_admin, ticket.deadline, assignee_id="dean-7"
    ).ticket
    assert assigned.status == TicketStatus.IN_PROGRESS
    assert assigned.assignee_id == "dean-7"


# ========== Escalation ==========

def test_manual_escalation(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    ticket = state_machine.apply(ticket, TicketAction.START, hod, clock.now).ticket
    later = clock.now + timedelta(hours=1)
    result = state_machine.apply(ticket, TicketAction.ESCALATE, hod, later, reason="needs dean")
    escalated = result.ticket
    assert escalated.status == TicketStatus.ESCALATED
    assert escalated.escalation_level == 1
    assert escalated.authority == "COLLEGE"
    assert escalated.assignee_id is None
    assert escalated.deadline == later + timedelta(hours=12)
    event = result.events[0]
    assert isinstance(event, EscalationEvent)
    assert event.triggered_by == EscalationTrigger.MANUAL
    assert escalated.escalation_history == [event]


def test_manual_escalation_from_open_is_invalid(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    with pytest.raises(InvalidTransition):
        state_machine.apply(ticket, TicketAction.ESCALATE, hod, clock.now)


def test_sla_escalation_requires_system(state_machine, student, campus_admin, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    with pytest.raises(Unauthorized):
        state_machine.escalate(ticket, campus_admin, EscalationTrigger.SLA_BREACH, "late",
                               ticket.deadline)


def test_sla_escalation_before_deadline_is_noop(state_machine, student, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    result = state_machine.escalate(ticket, SYSTEM, EscalationTrigger.SLA_BREACH, "late",
                                    ticket.deadline - timedelta(seconds=1))
    assert result.changed is False
    assert result.events == []
    assert result.ticket is ticket


def test_sla_escalation_from_open(state_machine, student, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    escalated = _sla_escalate(state_machine, ticket)
    assert escalated.escalation_level == 1
    assert escalated.status == TicketStatus.ESCALATED
    assert escalated.escalation_history[0].triggered_by == EscalationTrigger.SLA_BREACH


def test_level_never_decreases(state_machine, student, campus_admin, org, clock):
    ticket = _at_level(state_machine, _create(state_machine, student, org.d1, clock.now), 2)
    assigned = state_machine.apply(ticket, TicketAction.ASSIGN, campus_admin, ticket.deadline).ticket
    resolved = state_machine.apply(assigned, TicketAction.RESOLVE, campus_admin, ticket.deadline).ticket
    assert resolved.escalation_level == 2


def test_sla_escalation_at_top_level(state_machine, student, org, clock, caplog):
    ticket = _at_level(state_machine, _create(state_machine, student, org.d1, clock.now), 3)
    assert ticket.authority == "SYSTEM"

    result = state_machine.escalate(ticket, SYSTEM, EscalationTrigger.SLA_BREACH, "late",
                                    ticket.deadline)
    assert result.changed is True
    assert [type(e) for e in result.events] == [MaxEscalationReached]
    assert result.ticket.escalation_level == 3
    assert result.ticket.status == TicketStatus.ESCALATED
    assert result.ticket.escalation_exhausted is True
    assert "terminal escalation reached" in caplog.text

    again = state_machine.escalate(result.ticket, SYSTEM, EscalationTrigger.SLA_BREACH, "late",
                                   ticket.deadline + timedelta(hours=1))
    assert again.changed is False
    assert again.events == []


def test_manual_escalation_at_top_level(state_machine, student, campus_admin, org, clock):
    ticket = _at_level(state_machine, _create(state_machine, student, org.d1, clock.now), 3)
    ticket = state_machine.apply(ticket, TicketAction.ASSIGN, campus_admin, ticket.deadline).ticket
    result = state_machine.escalate(ticket, campus_admin, EscalationTrigger.MANUAL, "again",
                                    ticket.deadline)
    assert result.changed is False
    assert [type(e) for e in result.events] == [MaxEscalationReached]
    assert result.ticket.escalation_level == 3


def test_reassign_keeps_status(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    ticket = state_machine.apply(ticket, TicketAction.START, hod, clock.now).ticket
    result = state_machine.reassign(ticket, hod, "tech-3", "night shift", clock.now)
    assert result.ticket.assignee_id == "tech-3"
    assert result.ticket.status == TicketStatus.IN_PROGRESS
    assert result.events[0].from_assignee_id == "hod-1"


# ========== Linked duplicates ==========

def _duplicate(state_machine, student, org, parent, now):
    return state_machine.create_linked_duplicate(
        "TKT-000002", student, "Water heater still broken", DESCRIPTION,
        TicketCategory.HOSTEL, Priority.HIGH, org.d1,
        parent=parent, similarity=0.93, embedding_model="test-embed-v1", now=now,
    )


def test_linked_duplicate_has_no_deadline(state_machine, student, org, clock):
    parent = _create(state_machine, student, org.d1, clock.now)
    result = _duplicate(state_machine, student, org, parent, clock.now)
    assert result.ticket.deadline is None
    assert result.ticket.linked_duplicate_of == parent.id
    assert result.ticket.status == parent.status
    assert [type(e) for e in result.events] == [DuplicateLinked]


def test_linked_duplicate_rejects_direct_transitions(state_machine, student, hod, org, clock):
    parent = _create(state_machine, student, org.d1, clock.now)
    duplicate = _duplicate(state_machine, student, org, parent, clock.now).ticket
    with pytest.raises(InvalidTransition):
        state_machine.apply(duplicate, TicketAction.START, hod, clock.now)
    with pytest.raises(InvalidTransition):
        state_machine.escalate(duplicate, SYSTEM, EscalationTrigger.SLA_BREACH, "late", clock.now)


def test_cannot_link_to_a_duplicate(state_machine, student, org, clock):
    parent = _create(state_machine, student, org.d1, clock.now)
    duplicate = _duplicate(state_machine, student, org, parent, clock.now).ticket
    with pytest.raises(InvalidTransition):
        _duplicate(state_machine, student, org, duplicate, clock.now)


def test_mirror_parent_copies_status_and_level(state_machine, student, org, clock):
    parent = _create(state_machine, student, org.d1, clock.now)
    duplicate = _duplicate(state_machine, student, org, parent, clock.now).ticket
    parent = _sla_escalate(state_machine, parent)

    mirrored = state_machine.mirror_parent(duplicate, parent, clock.now)
    assert mirrored.ticket.status == TicketStatus.ESCALATED
    assert mirrored.ticket.escalation_level == 1
    assert mirrored.ticket.deadline is None

    unchanged = state_machine.mirror_parent(mirrored.ticket, parent, clock.now)
    assert unchanged.changed is False


# ========== Messages ==========

def test_requester_reply_resumes_pending_ticket(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    pending = state_machine.apply(ticket, TicketAction.REQUEST_INFO, hod, clock.now).ticket
    result = state_machine.add_message(pending, student, "It is room 204.", now=clock.now)
    assert result.ticket.status == TicketStatus.IN_PROGRESS
    assert [type(e) for e in result.events] == [MessagePosted, TicketStatusChanged]
    assert result.ticket.messages[-1].body == "It is room 204."


def test_first_staff_reply_sets_first_response(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    note = state_machine.add_message(ticket, hod, "checking logs", is_internal=True, now=clock.now).ticket
    assert note.first_response_at is None
    later = clock.now + timedelta(minutes=30)
    replied = state_machine.add_message(note, hod, "A plumber is on the way.", now=later).ticket
    assert replied.first_response_at == later


def test_internal_notes_are_staff_only(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    with pytest.raises(Unauthorized):
        state_machine.add_message(ticket, student, "secret", is_internal=True, now=clock.now)

    ticket = state_machine.add_message(ticket, hod, "internal triage", is_internal=True, now=clock.now).ticket
    ticket = state_machine.add_message(ticket, hod, "public reply", now=clock.now).ticket
    assert [m.body for m in state_machine.visible_messages(ticket, student)] == ["public reply"]
    assert len(state_machine.visible_messages(ticket, hod)) == 2


def test_outsider_cannot_post(state_machine, student, make_principal, org, clock):
    other = make_principal("stu-9", "STUDENT", scope=org.d1)
    ticket = _create(state_machine, student, org.d1, clock.now)
    with pytest.raises(Unauthorized):
        state_machine.add_message(ticket, other, "me too", now=clock.now)


def test_cannot_post_on_rejected_ticket(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    ticket = state_machine.apply(ticket, TicketAction.REJECT, hod, clock.now).ticket
    with pytest.raises(InvalidTransition):
        state_machine.add_message(ticket, student, "why?", now=clock.now)


def test_empty_message_rejected(state_machine, student, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    with pytest.raises(ValidationException):
        state_machine.add_message(ticket, student, "   ", now=clock.now)


def test_message_body_limit(state_machine, student, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    longest = state_machine.add_message(ticket, student, "x" * MESSAGE_MAX_LENGTH, now=clock.now).ticket
    assert len(longest.messages[-1].body) == 5000
    with pytest.raises(ValidationException):
        state_machine.add_message(ticket, student, "x" * (MESSAGE_MAX_LENGTH + 1), now=clock.now)


# ========== System messages and routing ==========

def test_escalation_routes_by_level(state_machine, student, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    assert ticket.routed_role == "HOSTEL_WARDEN"

    roles = []
    for _ in range(3):
        ticket = _sla_escalate(state_machine, ticket)
        roles.append(ticket.routed_role)

    assert roles == ["DIRECTOR", "CAMPUS_ADMIN", "SYSTEM_ADMIN"]
    assert [e.to_role for e in ticket.escalation_history] == roles


def test_escalation_appends_internal_system_note(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    escalated = _sla_escalate(state_machine, ticket)

    note = escalated.messages[-1]
    assert (note.is_system, note.is_internal, note.author_id) == (True, True, "system")
    assert note.body == "Ticket escalated from DEPARTMENT to COLLEGE (DIRECTOR). Reason: SLA breach"
    assert state_machine.visible_messages(escalated, student) == []
    assert state_machine.visible_messages(escalated, hod) == [note]


def test_exhausted_escalation_adds_no_note(state_machine, student, org, clock):
    ticket = _at_level(state_machine, _create(state_machine, student, org.d1, clock.now), 3)
    result = state_machine.escalate(ticket, SYSTEM, EscalationTrigger.SLA_BREACH, "late", ticket.deadline)
    assert len(result.ticket.messages) == len(ticket.messages) == 3


def test_reassign_appends_system_note(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    ticket = state_machine.apply(ticket, TicketAction.START, hod, clock.now).ticket
    reassigned = state_machine.reassign(ticket, hod, "tech-3", now=clock.now).ticket
    assert reassigned.messages[-1].body == "Ticket reassigned to tech-3"
    assert reassigned.messages[-1].is_system is True


@pytest.mark.parametrize("category, role", [
    (TicketCategory.TRANSPORT, "TRANSPORT_INCHARGE"),
    (TicketCategory.HOSTEL, "HOSTEL_WARDEN"),
    (TicketCategory.ACADEMIC, "HOD"),
    (TicketCategory.OTHER, "HOD"),
])
def test_level_zero_role_depends_on_category(category, role):
    assert role_for_level(category, 0) == role
    assert role_for_level(category, 1) == "DIRECTOR"


def test_role_for_unknown_level():
    with pytest.raises(ValueError):
        role_for_level(TicketCategory.ACADEMIC, 4)


# ========== Rating ==========

def test_rate_resolved_ticket(state_machine, student, hod, org, clock):
    resolved = _resolved(state_machine, student, hod, org, clock.now)
    result = state_machine.rate(resolved, student, 5, "Fixed quickly", clock.now)
    assert (result.ticket.rating, result.ticket.rating_comment) == (5, "Fixed quickly")
    assert result.ticket.rated_at == clock.now
    assert resolved.rating is None
    assert [type(e) for e in result.events] == [TicketRated]


def test_rate_rejects_long_comment(state_machine, student, hod, org, clock):
    resolved = _resolved(state_machine, student, hod, org, clock.now)
    with pytest.raises(ValidationException):
        state_machine.rate(resolved, student, 4, "x" * (RATING_COMMENT_MAX_LENGTH + 1), clock.now)


def test_rate_rejected_ticket_is_invalid(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    rejected = state_machine.apply(ticket, TicketAction.REJECT, hod, clock.now).ticket
    with pytest.raises(InvalidTransition):
        state_machine.rate(rejected, student, 2, now=clock.now)


# ========== Timeline ==========

def test_timeline_includes_only_system_messages(state_machine, student, hod, org, clock):
    ticket = _create(state_machine, student, org.d1, clock.now)
    ticket = state_machine.add_message(ticket, student, "Still cold", now=clock.now).ticket
    ticket = _sla_escalate(state_machine, ticket)

    timeline = build_timeline(ticket, ticket.messages)

    assert [e.kind for e in timeline] == ["created", "escalation", "system_message"]
    assert timeline[1].data["auto_escalated"] is True
    assert timeline[1].data["from_authority"] == "DEPARTMENT"
