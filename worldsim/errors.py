from __future__ import annotations


class SimulationError(RuntimeError):
    """Raised when the model's reply cannot be turned into simulation output."""
