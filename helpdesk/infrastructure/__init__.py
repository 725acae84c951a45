"""
Shared Infrastructure
=====================

Technical services used by several bounded contexts:
- database: async SQLAlchemy engine and session management
- embeddings: OpenAI-compatible embedding client
"""
