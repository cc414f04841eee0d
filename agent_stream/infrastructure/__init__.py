"""Infrastructure Layer — provider SDK adapters, backend client and cross-cutting concerns.

Invariants:
    - Every external failure is mapped to the core error hierarchy
    - Provider stream setup is wrapped with retry/timeout/error mapping

Design Decisions:
    - Thin adapters over official SDKs; the engine depends only on Protocols
"""
