from __future__ import annotations

from typing import Optional


class FundcastError(Exception):
    """Base class for errors raised by fundcast."""


class FitDivergence(FundcastError, RuntimeError):
    """The meet-goal logistic optimizer did not converge."""


class SamplerDivergence(FundcastError, RuntimeError):
    """An MCMC chain could not produce a usable posterior for a partition."""

    def __init__(self, message: str, platform: Optional[str] = None, outcome: Optional[str] = None):
        self.message = message
        self.platform = platform
        self.outcome = outcome
        where = f"{platform}/{outcome}: " if platform and outcome else ""
        super().__init__(f"{where}{message}")

    def __reduce__(self):
        # Keep platform/outcome when re-raised from a worker process.
        return (self.__class__, (self.message, self.platform, self.outcome))


class InvalidQuery(FundcastError, ValueError):
    """Malformed inputs to a survival or quantile query."""
