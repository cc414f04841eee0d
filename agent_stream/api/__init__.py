"""API Layer — FastAPI routes and error handlers.

Invariants:
    - Routes registered explicitly in main.py (no auto-discovery)
    - Non-streaming failures return the structured JSON error envelope

Design Decisions:
    - Thin routes delegate to AgentRunner; SSE framing lives in the route
"""
