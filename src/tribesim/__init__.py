"""Social-dynamics core for agent-based life simulation."""

__version__ = "0.3.0"
