"""Agent Stream — streaming orchestration engine for tool-calling LLM turns.

Invariants:
    - Package root contains no executable code (import side-effects prohibited)
"""
