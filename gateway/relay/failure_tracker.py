import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class FailureTracker:
    """Consecutive-failure counter that trips once when the threshold is reached."""

    threshold: int = 5
    consecutive_failures: int = field(default=0, init=False)
    last_failure: float = field(default=0.0, init=False)
    tripped: bool = field(default=False, init=False)

    def record_failure(self) -> bool:
        """Count a failed probe. Returns True only on the call that trips."""
        self.consecutive_failures += 1
        self.last_failure = time.monotonic()
        if self.tripped or self.consecutive_failures < self.threshold:
            return False
        self.tripped = True
        logger.warning("Failure threshold reached after %d consecutive failures", self.consecutive_failures)
        return True

    def record_success(self) -> None:
        # A success ends the streak; a tripped circuit stays tripped until reset.
        self.consecutive_failures = 0

    def reset(self) -> None:
        self.consecutive_failures = 0
        self.last_failure = 0.0
        self.tripped = False
