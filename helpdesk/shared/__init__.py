"""
Shared Kernel Module
====================

Generic infrastructure used by every bounded context (access, sla,
tickets, intake).

DO NOT add ticket, SLA or permission business logic to the shared kernel.
"""
