# Copyright (c) VaReg Contributors

"""Observer reporting the progress of a registration through the logging module."""

import logging
from typing import Optional

from vareg.registration.events import IterationRecord, RegistrationEventType

__all__ = ["RegistrationLogger"]


class RegistrationLogger:
    """Logs initialization, every iteration and the end of every level.

    Parameters
    ----------
    log_every : int
        Log only every `log_every`-th iteration. Default: 1.
    """

    def __init__(self, log_every: int = 1, name: Optional[str] = None) -> None:
        self.logger = logging.getLogger(name or type(self).__name__)
        self.log_every = max(1, log_every)

    def __call__(self, event_type: RegistrationEventType, record: Optional[IterationRecord] = None) -> None:
        if event_type == RegistrationEventType.INITIALIZE:
            self.logger.info("Starting registration.")
        elif event_type == RegistrationEventType.ITERATION:
            if record.iteration % self.log_every == 0:
                self.logger.info(
                    "Level %d, iteration %4d: metric = %.6f, rms_change = %.6f.",
                    record.level,
                    record.iteration,
                    record.metric,
                    record.rms_change,
                )
        elif event_type == RegistrationEventType.LEVEL:
            self.logger.info(
                "Finished level %d after %d iterations: metric = %.6f.", record.level, record.iteration, record.metric
            )
