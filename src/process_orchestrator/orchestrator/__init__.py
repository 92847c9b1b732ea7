"""Operator-facing components.

- Structured logging
- The ``orchestrator`` command-line interface
"""
