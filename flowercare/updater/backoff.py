"""
Retry backoff for failing sensors.
"""

from ..utils.config import RetryConfig


class BackoffPolicy:
    """
    Maps the previous retry delay of a sensor to the next one.

    Delays start at ``min_duration``, grow by ``factor`` on every further
    failure and are capped at ``max_duration``. There is no jitter.
    """

    def __init__(self, retry_config: RetryConfig):
        """
        Args:
            retry_config: Backoff parameters

        Raises:
            InvalidRetryConfigError: If the parameters are out of range
        """
        retry_config.validate()
        self.min_duration = retry_config.min_duration
        self.max_duration = retry_config.max_duration
        self.factor = retry_config.factor

    def next(self, previous: float) -> float:
        """Return the delay in seconds to wait after a failure following ``previous``."""
        if previous < self.min_duration:
            return self.min_duration

        return min(previous * self.factor, self.max_duration)

    def __repr__(self) -> str:
        return (f"BackoffPolicy(min_duration={self.min_duration}, "
                f"max_duration={self.max_duration}, factor={self.factor})")
