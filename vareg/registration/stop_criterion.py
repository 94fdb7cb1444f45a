# Copyright (c) VaReg Contributors

"""Convergence detection from the metric trace of a (multi-resolution) registration."""

from __future__ import annotations

import logging
from collections import deque
from typing import Optional, Sequence, Tuple

import numpy as np

from vareg.exceptions import ConfigurationError
from vareg.registration.events import IterationRecord, RegistrationEventType
from vareg.types import VaregEnum

__all__ = ["StopCriterion", "StopCriterionPolicy", "fit_regression_line"]


class StopCriterionPolicy(VaregEnum):
    DEFAULT = "default"
    SIMPLE_GRADUATED = "simple_graduated"
    GRADUATED = "graduated"


def fit_regression_line(values: Sequence[float]) -> Tuple[float, float, float]:
    """Least squares line through `values` sampled at 0, 1, ..., n - 1.

    Parameters
    ----------
    values : sequence of float
        At least two values.

    Returns
    -------
    tuple of float
        Slope, intercept and the largest absolute residual.
    """
    y = np.asarray(values, dtype=np.float64)
    if y.size < 2:
        raise ValueError(f"At least two values are needed to fit a line. Got {y.size}.")
    x = np.arange(y.size, dtype=np.float64)
    x_centered = x - x.mean()
    slope = float((x_centered * (y - y.mean())).sum() / (x_centered**2).sum())
    intercept = float(y.mean() - slope * x.mean())
    max_distance = float(np.abs(y - (slope * x + intercept)).max())
    return slope, intercept, max_distance


class StopCriterion:
    """Observer stopping a registration level once the metric trace flattens.

    The metric values of the current level, normalized by the first metric of the level, are fitted with a
    regression line over a sliding window. The level is converged when the absolute slope is below the threshold
    and, if enabled, no value is farther from the line than the maximum distance. An increase-count test declares
    convergence after a number of consecutive metric increases. The policy decides which test runs on which level.

    Parameters
    ----------
    registration_filter : RegistrationFilter
        Filter to stop once a level converged.
    multi_resolution : MultiResolutionRegistration, optional
        Controller to stop once the final level converged. Without controller every level is final.
    policy : StopCriterionPolicy
        Multi-resolution policy. Default: StopCriterionPolicy.SIMPLE_GRADUATED.
    regression_line_slope_threshold : float
        Threshold of the absolute slope. Default: 0.005.
    number_of_fitting_iterations : int
        Size of the regression window. Default: 20.
    perform_line_fitting_max_distance_check : bool
        Reject windows with values far from the fitted line. Default: False.
    line_fitting_max_distance : float
        Maximum distance of a window value to the fitted line. Default: 0.01.
    perform_increase_count_check : bool
        Run the increase-count test on the levels that use line fitting. Default: False.
    increase_count_threshold : int
        Number of consecutive metric increases to declare convergence. Default: 10.
    """

    def __init__(
        self,
        registration_filter,
        multi_resolution=None,
        policy: StopCriterionPolicy = StopCriterionPolicy.SIMPLE_GRADUATED,
        regression_line_slope_threshold: float = 0.005,
        number_of_fitting_iterations: int = 20,
        perform_line_fitting_max_distance_check: bool = False,
        line_fitting_max_distance: float = 0.01,
        perform_increase_count_check: bool = False,
        increase_count_threshold: int = 10,
    ) -> None:
        if number_of_fitting_iterations < 2:
            raise ConfigurationError(
                f"The regression window needs at least two iterations. Got {number_of_fitting_iterations}."
            )
        if increase_count_threshold < 1:
            raise ConfigurationError(f"The increase count threshold has to be positive. Got {increase_count_threshold}.")
        self.logger = logging.getLogger(type(self).__name__)
        self.registration_filter = registration_filter
        self.multi_resolution = multi_resolution
        self.policy = policy
        self.regression_line_slope_threshold = regression_line_slope_threshold
        self.number_of_fitting_iterations = number_of_fitting_iterations
        self.perform_line_fitting_max_distance_check = perform_line_fitting_max_distance_check
        self.line_fitting_max_distance = line_fitting_max_distance
        self.perform_increase_count_check = perform_increase_count_check
        self.increase_count_threshold = increase_count_threshold

        self.converged_levels = []
        self._window: deque = deque(maxlen=number_of_fitting_iterations)
        self._first_metric: Optional[float] = None
        self._last_metric: Optional[float] = None
        self._increase_count = 0

    @property
    def number_of_levels(self) -> int:
        if self.multi_resolution is None:
            return 1
        return self.multi_resolution.number_of_levels

    def reset(self) -> None:
        """Forgets the metric trace of the current level."""
        self._window.clear()
        self._first_metric = None
        self._last_metric = None
        self._increase_count = 0

    def active_checks(self, level: int) -> Tuple[bool, bool]:
        """Whether the line fitting test and the increase-count test run on `level`."""
        final_level = self.number_of_levels - 1
        if self.policy == StopCriterionPolicy.DEFAULT or level >= final_level:
            return True, self.perform_increase_count_check
        if self.policy == StopCriterionPolicy.GRADUATED and level == final_level - 1:
            return False, True
        return False, False

    def line_fitting_converged(self) -> bool:
        if len(self._window) < self.number_of_fitting_iterations:
            return False
        slope, _, max_distance = fit_regression_line(list(self._window))
        if abs(slope) >= self.regression_line_slope_threshold:
            return False
        if self.perform_line_fitting_max_distance_check and max_distance > self.line_fitting_max_distance:
            return False
        return True

    def increase_count_converged(self) -> bool:
        return self._increase_count >= self.increase_count_threshold

    def __call__(self, event_type: RegistrationEventType, record: Optional[IterationRecord] = None) -> None:
        if event_type in (RegistrationEventType.INITIALIZE, RegistrationEventType.LEVEL):
            self.reset()
        elif event_type == RegistrationEventType.ITERATION:
            self._add_record(record)

    def _add_record(self, record: IterationRecord) -> None:
        metric = record.metric
        if self._first_metric is None:
            self._first_metric = metric
        if self._last_metric is not None:
            self._increase_count = self._increase_count + 1 if metric > self._last_metric else 0
        self._last_metric = metric
        self._window.append(metric / abs(self._first_metric) if self._first_metric != 0 else metric)

        line_fitting, increase_count = self.active_checks(record.level)
        if (line_fitting and self.line_fitting_converged()) or (increase_count and self.increase_count_converged()):
            self._stop(record)

    def _stop(self, record: IterationRecord) -> None:
        self.logger.info(
            "Level %d converged after %d iterations (metric = %.6f).", record.level, record.iteration, record.metric
        )
        self.converged_levels.append(record.level)
        self.registration_filter.stop_registration()
        if self.multi_resolution is not None and record.level >= self.number_of_levels - 1:
            self.multi_resolution.stop_registration()
