"""Services Layer — event normalizer, round drivers, tool dispatch and agent runner.

Invariants:
    - Services reach IO only through core/boundary_protocols.py
    - Tool dispatch uses an explicit name → handler mapping (no auto-discovery)

Design Decisions:
    - One file per collaborator of the turn loop; the runner wires them together
"""
