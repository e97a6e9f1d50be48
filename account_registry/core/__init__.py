"""Core Layer — account state machine and concurrent store, no IO, no async.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, or db/
    - Side effects (persistence, mail) reach core only through Protocols

Design Decisions:
    - Functional core separated from imperative shell: the shell decides when
      to persist or send mail, core only decides whether a transition is legal
"""
