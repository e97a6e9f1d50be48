"""Database Infrastructure — SQLAlchemy Base for the durable record store.

Invariants:
    - Single async engine per process (owned by DatabaseSessionManager)
"""
