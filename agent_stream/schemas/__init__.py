"""Pydantic Schemas — request validation for the HTTP surface.

Invariants:
    - Schemas validate at system boundary (request bodies only)
    - Converted to core dataclasses before reaching services

Design Decisions:
    - Separate from core types: schemas are API contracts, core types are engine values
"""
