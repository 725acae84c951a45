"""
Tickets Module
==============

Bounded Context for the ticket lifecycle.

Responsibilities:
- Validate and apply status transitions (TicketStateMachine)
- Persist tickets with compare-and-swap on a version counter
- Mirror parent transitions onto linked duplicates
- Publish domain events for notification and analytics collaborators
- Expose the ticket HTTP API
"""
