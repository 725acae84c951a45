"""
Intake Module
=============

Bounded Context for filing tickets.

Responsibilities:
- Embed new ticket text through an OpenAI-compatible provider
- Rank open tickets of the same department by cosine similarity
- Link near-identical tickets to their parent instead of starting a new SLA clock
"""
