"""
Campus Helpdesk
===============

Core of a university helpdesk: ticket lifecycle state machine, SLA-driven
escalation, scope-aware role permissions and duplicate-ticket detection.
"""

__version__ = "1.0.0"
