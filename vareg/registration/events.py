# Copyright (c) VaReg Contributors

"""Notifications emitted by the registration filter and the multi-resolution controller.

Observers are plain callables taking `(event_type, record)`. They are called synchronously, in registration order,
from the thread that runs the registration loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from vareg.types import VaregEnum

__all__ = ["IterationRecord", "Observable", "Observer", "RegistrationEventType"]


class RegistrationEventType(VaregEnum):
    INITIALIZE = "initialize"
    ITERATION = "iteration"
    LEVEL = "level"


@dataclass(frozen=True)
class IterationRecord:
    """Snapshot of the registration state after an iteration or a level.

    Parameters
    ----------
    level : int
        Zero based resolution level, coarsest first.
    iteration : int
        Number of iterations elapsed on `level`.
    metric : float
        Similarity metric merged over all processed voxels.
    rms_change : float
        Root mean square magnitude of the last update field.
    """

    level: int
    iteration: int
    metric: float
    rms_change: float


Observer = Callable[[RegistrationEventType, Optional[IterationRecord]], None]


class Observable:
    """Keeps an ordered list of observers and notifies them."""

    def __init__(self) -> None:
        self._observers: List[Observer] = []
        self.logger = logging.getLogger(type(self).__name__)

    def add_observer(self, observer: Observer) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: Observer) -> None:
        self._observers.remove(observer)

    def notify(self, event_type: RegistrationEventType, record: Optional[IterationRecord] = None) -> None:
        for observer in list(self._observers):
            observer(event_type, record)
