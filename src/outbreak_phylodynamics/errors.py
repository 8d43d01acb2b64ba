# src/outbreak_phylodynamics/errors.py
"""Error kinds raised by the simulation and transformation pipeline."""


class InvalidParameter(ValueError):
    """Out-of-range probability, non-positive rate or step size, etc."""


class DataInconsistency(ValueError):
    """Epidemiological and genetic data cannot be reconciled."""


class ExhaustedRetries(RuntimeError):
    """No attempt reached the minimum epidemic size."""

    def __init__(self, attempts, min_epidemic_size):
        self.attempts = attempts
        self.min_epidemic_size = min_epidemic_size
        super().__init__(
            f"No outbreak reached {min_epidemic_size} infections in {attempts} attempts"
        )
