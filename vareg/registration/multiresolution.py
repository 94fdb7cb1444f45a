# Copyright (c) VaReg Contributors

"""Coarse to fine registration over an image pyramid."""

from __future__ import annotations

from typing import List, Optional, Sequence

import torch

from vareg.data.image import Image, VectorField
from vareg.exceptions import ConfigurationError
from vareg.functionals.smooth import binary_dilate, gaussian_smooth
from vareg.registration.events import IterationRecord, Observable, RegistrationEventType
from vareg.registration.pyramid import ImagePyramid, default_schedule, validate_schedule
from vareg.registration.registration import RegistrationFilter
from vareg.registration.warp import exponentiate, resample_field

__all__ = ["MultiResolutionRegistration", "expand_field", "prepare_mask"]


def expand_field(field: VectorField, target_grid) -> VectorField:
    """Resamples `field` onto `target_grid` without rescaling its physical vectors.

    A field already on the target grid is copied without interpolation.
    """
    if field.grid.same_domain(target_grid):
        return field.clone()
    return resample_field(field, target_grid)


def prepare_mask(mask: Image) -> Image:
    """Thresholds `mask` at half its maximum and dilates the result by one voxel.

    The dilation compensates for the shrinkage of the mask caused by the pyramid smoothing.

    Parameters
    ----------
    mask : Image
        Mask of a pyramid level.

    Returns
    -------
    Image
        Binary mask with values 0 and 1 on the grid of `mask`.
    """
    maximum = float(mask.data.max())
    if maximum <= 0:
        foreground = mask.data > maximum
    else:
        foreground = mask.data >= 0.5 * maximum
    return Image(binary_dilate(foreground, radius=1).to(mask.data.dtype), mask.grid)


class MultiResolutionRegistration(Observable):
    """Runs a :class:`RegistrationFilter` on every level of an image pyramid, coarsest level first.

    The field of a level initializes the next level after being resampled onto its grid. Observers receive an
    INITIALIZE event before the first level, every ITERATION event of the filter and a LEVEL event after every
    level.

    Parameters
    ----------
    registration_filter : RegistrationFilter, optional
        Single level registration filter.
    number_of_levels : int
        Number of pyramid levels. Default: 3.
    number_of_iterations : list of int, optional
        Iteration budget per level, coarsest first. Default: 10 per level.
    schedule : list of list of int, optional
        Shrink factor per level and axis. Default: `2 ** (L - 1 - level)` on every axis.
    final_exponential_num_iterations : int, optional
        Number of squaring steps of the final exponentiation in the diffeomorphic search spaces. If None, the number
        is chosen from the field magnitude.
    """

    def __init__(
        self,
        registration_filter: Optional[RegistrationFilter] = None,
        number_of_levels: int = 3,
        number_of_iterations: Optional[Sequence[int]] = None,
        schedule: Optional[Sequence[Sequence[int]]] = None,
        final_exponential_num_iterations: Optional[int] = None,
    ) -> None:
        super().__init__()
        self.registration_filter: Optional[RegistrationFilter] = None
        if registration_filter is not None:
            self.set_registration_filter(registration_filter)
        self.number_of_levels = number_of_levels
        self.number_of_iterations: List[int] = (
            list(number_of_iterations) if number_of_iterations is not None else [10] * number_of_levels
        )
        self.schedule = schedule
        self.final_exponential_num_iterations = final_exponential_num_iterations

        self.fixed_image: Optional[Image] = None
        self.moving_image: Optional[Image] = None
        self.mask_image: Optional[Image] = None
        self.initial_field: Optional[VectorField] = None

        self.fixed_pyramid: Optional[ImagePyramid] = None
        self.moving_pyramid: Optional[ImagePyramid] = None
        self.mask_pyramid: Optional[ImagePyramid] = None

        self._field: Optional[VectorField] = None
        self._output: Optional[VectorField] = None
        self._displacement: Optional[VectorField] = None
        self._stop_registration = False
        self.elapsed_levels = 0
        self.metric = 0.0
        self.rms_change = 0.0

    def set_registration_filter(self, registration_filter: RegistrationFilter) -> None:
        if self.registration_filter is not None:
            self.registration_filter.remove_observer(self._forward_event)
        self.registration_filter = registration_filter
        registration_filter.add_observer(self._forward_event)

    def set_fixed_image(self, image: Image) -> None:
        self.fixed_image = image

    def set_moving_image(self, image: Image) -> None:
        self.moving_image = image

    def set_mask_image(self, mask: Optional[Image]) -> None:
        self.mask_image = mask

    def set_initial_field(self, field: Optional[VectorField]) -> None:
        self.initial_field = field

    def _forward_event(self, event_type: RegistrationEventType, record: Optional[IterationRecord] = None) -> None:
        # The controller announces its own initialization once per run.
        if event_type == RegistrationEventType.INITIALIZE:
            return
        if record is not None:
            self.metric = record.metric
            self.rms_change = record.rms_change
        self.notify(event_type, record)

    @property
    def current_level(self) -> int:
        return self.elapsed_levels

    def stop_registration(self) -> None:
        """Requests the run to stop after the current iteration."""
        self._stop_registration = True
        if self.registration_filter is not None:
            self.registration_filter.stop_registration()

    def halt(self) -> bool:
        return self.elapsed_levels >= self.number_of_levels or self._stop_registration

    def get_output(self) -> Optional[VectorField]:
        """Last published field: displacement field, or velocity field in the diffeomorphic search spaces."""
        return self._output

    def get_displacement_field(self) -> Optional[VectorField]:
        return self._displacement if self._is_diffeomorphic else self._output

    def get_velocity_field(self) -> Optional[VectorField]:
        return self._output if self._is_diffeomorphic else None

    @property
    def _is_diffeomorphic(self) -> bool:
        return self.registration_filter is not None and self.registration_filter.is_diffeomorphic

    def initialize(self) -> None:
        """Validates the configuration and builds the pyramids.

        Raises
        ------
        ConfigurationError
            If the filter or an image is missing, or the iteration budgets do not match the number of levels.
        """
        if self.registration_filter is None:
            raise ConfigurationError("No registration filter set.")
        if self.fixed_image is None or self.moving_image is None:
            raise ConfigurationError("Fixed and moving image have to be set.")
        if self.number_of_levels < 1:
            raise ConfigurationError(f"The number of levels has to be positive. Got {self.number_of_levels}.")
        if len(self.number_of_iterations) != self.number_of_levels:
            raise ConfigurationError(
                f"Got {len(self.number_of_iterations)} iteration budgets for {self.number_of_levels} levels."
            )

        ndim = self.fixed_image.grid.ndim
        schedule = self.schedule if self.schedule is not None else default_schedule(self.number_of_levels, ndim)
        schedule = validate_schedule(schedule, self.number_of_levels, ndim)

        self.fixed_pyramid = ImagePyramid(self.fixed_image, self.number_of_levels, schedule)
        self.moving_pyramid = ImagePyramid(self.moving_image, self.number_of_levels, schedule)
        self.mask_pyramid = None
        if self.mask_image is not None:
            # Byte masks are smoothed and interpolated with the floating type of the fixed image.
            mask = self.mask_image
            if not torch.is_floating_point(mask.data):
                mask = Image(mask.data.to(self.fixed_image.data.dtype), mask.grid)
            self.mask_pyramid = ImagePyramid(mask, self.number_of_levels, schedule)

        self._field = self._initial_field_at_first_level() if self.initial_field is not None else None
        self._stop_registration = False
        self.elapsed_levels = 0

    def _initial_field_at_first_level(self) -> VectorField:
        factors = self.fixed_pyramid.schedule[0]
        field = self.initial_field
        if any(factor > 1 for factor in factors):
            sigmas = [
                0.5 * factor * fixed_spacing / field_spacing
                for factor, fixed_spacing, field_spacing in zip(
                    factors, self.fixed_image.grid.spacing, field.grid.spacing
                )
            ]
            field = VectorField(gaussian_smooth(field.data, sigmas), field.grid)
        return expand_field(field, self.fixed_pyramid[0].grid)

    def run(self) -> Optional[VectorField]:
        """Runs all levels and returns the final displacement field on the fixed image grid."""
        self.initialize()
        self.notify(RegistrationEventType.INITIALIZE)
        registration_filter = self.registration_filter

        while not self.halt():
            level = self.elapsed_levels
            fixed_image = self.fixed_pyramid[level]
            field = self._field
            if field is not None:
                field = expand_field(field, fixed_image.grid)

            registration_filter.set_fixed_image(fixed_image)
            registration_filter.set_moving_image(self.moving_pyramid[level])
            registration_filter.set_mask_image(
                prepare_mask(self.mask_pyramid[level]) if self.mask_pyramid is not None else None
            )
            registration_filter.set_initial_field(field)
            registration_filter.number_of_iterations = self.number_of_iterations[level]
            registration_filter.current_level = level

            self._field = registration_filter.run()
            self._output = self._field
            self._displacement = registration_filter.get_displacement_field()
            self.metric = registration_filter.metric
            self.rms_change = registration_filter.rms_change
            self.elapsed_levels += 1
            self.notify(
                RegistrationEventType.LEVEL,
                IterationRecord(level, registration_filter.elapsed_iterations, self.metric, self.rms_change),
            )

        self._finalize()
        return self.get_displacement_field()

    def _finalize(self) -> None:
        if self._field is None or self.elapsed_levels == 0:
            return
        factors = self.fixed_pyramid.schedule[self.elapsed_levels - 1]
        if all(factor == 1 for factor in factors):
            final = self._field
        else:
            final = expand_field(self._field, self.fixed_image.grid)

        self._output = final
        if self._is_diffeomorphic:
            self._displacement = exponentiate(
                final,
                self.final_exponential_num_iterations,
                self.registration_filter.exponential_max_iterations,
            )
        else:
            self._displacement = None
