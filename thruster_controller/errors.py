"""
Error types raised by the thruster controller.
"""


class ConfigError(ValueError):
    """Missing or invalid vehicle property. Fatal at startup."""


class SolverDivergence(RuntimeError):
    """The solver produced no finite iterate for this cycle."""


class DeadlineMiss(RuntimeError):
    """A control cycle took longer than its period."""

    def __init__(self, elapsed: float, period: float):
        super().__init__(
            f"Solve took {elapsed * 1000.0:.1f} ms, budget is {period * 1000.0:.1f} ms"
        )
        self.elapsed = elapsed
        self.period = period


class InvalidMeasurement(ValueError):
    """A sensor sample that cannot be turned into vehicle state. The sample is dropped."""
