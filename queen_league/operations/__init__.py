"""
Operations Layer

Business logic operations that compose database access for multi-step
workflows with validation.

- RosterOperations: roster submission (full replacement) and raw box score recording
"""
