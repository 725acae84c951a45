"""
SLA Escalation Module
=====================

Bounded Context for SLA deadlines and automatic escalation.

Responsibilities:
- Map escalation urgency to deadline durations (SlaPolicy)
- Load the policy from YAML and hot-reload it on change
- Periodically escalate tickets whose deadline elapsed without resolution
"""
