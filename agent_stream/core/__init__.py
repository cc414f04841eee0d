"""Core Layer — pure streaming/context logic, no IO, no async, no network.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/ or schemas/
    - Functions are deterministic given their inputs (tokenizer is injected)

Design Decisions:
    - Functional core, imperative shell: services/ drives these helpers
"""
