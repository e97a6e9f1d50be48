"""Infrastructure Layer — durable storage, mail transport and cross-cutting concerns.

Invariants:
    - Infrastructure never decides whether a transition is legal (core/ does)
    - IO failures are mapped to RegistryError subclasses at this boundary

Design Decisions:
    - Implements the Protocols of core/repository_protocols.py
"""
