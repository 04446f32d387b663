"""
Exception types raised by the social-dynamics core.

Ineligible agents, already-specialized agents and already-archived agents
are normal skips and never raise.
"""

from __future__ import annotations


class ConfigError(ValueError):
    """Invalid or missing configuration threshold, detected at load time."""


class PairingError(ValueError):
    """Malformed pairing input passed to sexual reproduction."""

    def __init__(self, message: str, pair: tuple[int, int] | None = None):
        super().__init__(message)
        self.pair = pair


class ArchiveWriteError(RuntimeError):
    """The durable legend sink failed to append a record."""

    def __init__(self, agent_id: int, message: str):
        super().__init__(f"Failed to archive legend {agent_id}: {message}")
        self.agent_id = agent_id


class SpecializationLockedError(RuntimeError):
    """A committed specialization was asked to change."""
