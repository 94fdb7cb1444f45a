# Copyright (c) VaReg Contributors

"""Multi-resolution image pyramid with a per-level, per-axis shrink factor schedule."""

from __future__ import annotations

from typing import List, Optional, Sequence

from vareg.data.image import Image
from vareg.exceptions import ConfigurationError
from vareg.functionals.smooth import gaussian_smooth
from vareg.registration.warp import resample_image

__all__ = ["ImagePyramid", "default_schedule", "validate_schedule"]


def default_schedule(number_of_levels: int, ndim: int) -> List[List[int]]:
    """Shrink factors `2 ** (L - 1 - level)` on every axis, coarsest level first."""
    return [[2 ** (number_of_levels - 1 - level)] * ndim for level in range(number_of_levels)]


def validate_schedule(schedule: Sequence[Sequence[int]], number_of_levels: int, ndim: int) -> List[List[int]]:
    """Checks that `schedule` holds `number_of_levels` rows of `ndim` positive integers.

    Raises
    ------
    ConfigurationError
        If the schedule has the wrong shape or contains non-positive factors.
    """
    schedule = [[int(factor) for factor in row] for row in schedule]
    if len(schedule) != number_of_levels:
        raise ConfigurationError(f"The schedule needs {number_of_levels} levels, got {len(schedule)}.")
    for row in schedule:
        if len(row) != ndim or any(factor < 1 for factor in row):
            raise ConfigurationError(f"Every schedule row needs {ndim} positive shrink factors, got {row}.")
    return schedule


class ImagePyramid:
    """Smoothed and subsampled copies of an image, one per level.

    Level images are computed lazily and cached. A level whose shrink factors are all one is an unsmoothed copy of
    the input; otherwise the image is smoothed with a Gaussian of `factor / 2` voxels per axis and linearly
    resampled onto the downsampled grid.

    Parameters
    ----------
    image : Image
        Full resolution image.
    number_of_levels : int
        Number of levels.
    schedule : list of list of int, optional
        Shrink factor per level and axis. Default: :func:`default_schedule`.
    """

    def __init__(self, image: Image, number_of_levels: int, schedule: Optional[Sequence[Sequence[int]]] = None):
        if number_of_levels < 1:
            raise ConfigurationError(f"The number of levels has to be positive. Got {number_of_levels}.")
        ndim = image.grid.ndim
        if schedule is None:
            schedule = default_schedule(number_of_levels, ndim)
        self.schedule = validate_schedule(schedule, number_of_levels, ndim)
        self.image = image
        self.number_of_levels = number_of_levels
        self._levels: List[Optional[Image]] = [None] * number_of_levels

    def __len__(self) -> int:
        return self.number_of_levels

    def __getitem__(self, level: int) -> Image:
        if not 0 <= level < self.number_of_levels:
            raise IndexError(f"Level {level} out of range for a pyramid with {self.number_of_levels} levels.")
        if self._levels[level] is None:
            self._levels[level] = self._compute_level(level)
        return self._levels[level]

    def _compute_level(self, level: int) -> Image:
        factors = self.schedule[level]
        if all(factor == 1 for factor in factors):
            return self.image.clone()
        smoothed = gaussian_smooth(self.image.data, [0.5 * factor for factor in factors])
        grid = self.image.grid.downsample(factors)
        return resample_image(Image(smoothed, self.image.grid), grid)
