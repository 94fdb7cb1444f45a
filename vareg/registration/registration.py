# Copyright (c) VaReg Contributors

"""Single resolution variational registration filter."""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

import torch

from vareg.data.image import Image, VectorField, check_same_domain
from vareg.exceptions import ConfigurationError
from vareg.registration.events import IterationRecord, Observable, RegistrationEventType
from vareg.registration.forces import ForceFunction
from vareg.registration.regularizers import Regularizer
from vareg.registration.warp import exponentiate, warp_image
from vareg.types import VaregEnum
from vareg.utils import chunks

__all__ = ["RegistrationFilter", "SearchSpace"]


class SearchSpace(VaregEnum):
    STANDARD = "standard"
    DIFFEOMORPHIC = "diffeomorphic"
    SYMMETRIC_DIFFEOMORPHIC = "symmetric_diffeomorphic"


class RegistrationFilter(Observable):
    """Fixed point iteration of a variational registration at a single resolution.

    Every iteration computes the force of the current transformation, optionally regularizes the update, adds the
    scaled update to the current field and optionally regularizes the result. In the diffeomorphic search spaces the
    current field is a stationary velocity field whose exponential is the displacement field.

    Parameters
    ----------
    force_function : ForceFunction, optional
        Force function computing the update per voxel.
    regularizer : Regularizer, optional
        Regularizer applied to the update field and/or the current field.
    search_space : SearchSpace
        Search space of the transformation. Default: SearchSpace.STANDARD.
    number_of_iterations : int
        Maximum number of iterations. Default: 10.
    smooth_update_field : bool
        Regularize the update field (fluid-like regularization). Default: False.
    smooth_displacement_field : bool
        Regularize the current field after the update (elastic-like regularization). Default: True.
    exponential_num_iterations : int, optional
        Fixed number of squaring steps of the exponential. If None, the number is chosen from the field magnitude.
    exponential_max_iterations : int
        Upper bound of the automatic number of squaring steps. Default: 20.
    num_threads : int, optional
        Number of workers of the per-voxel pass. Default: number of CPUs.
    """

    def __init__(
        self,
        force_function: Optional[ForceFunction] = None,
        regularizer: Optional[Regularizer] = None,
        search_space: SearchSpace = SearchSpace.STANDARD,
        number_of_iterations: int = 10,
        smooth_update_field: bool = False,
        smooth_displacement_field: bool = True,
        exponential_num_iterations: Optional[int] = None,
        exponential_max_iterations: int = 20,
        num_threads: Optional[int] = None,
    ) -> None:
        super().__init__()
        self.force_function = force_function
        self.regularizer = regularizer
        self.search_space = search_space
        self.number_of_iterations = number_of_iterations
        self.smooth_update_field = smooth_update_field
        self.smooth_displacement_field = smooth_displacement_field
        self.exponential_num_iterations = exponential_num_iterations
        self.exponential_max_iterations = exponential_max_iterations
        self.num_threads = num_threads if num_threads is not None else (os.cpu_count() or 1)
        self.current_level = 0

        self.fixed_image: Optional[Image] = None
        self.moving_image: Optional[Image] = None
        self.mask_image: Optional[Image] = None
        self.initial_field: Optional[VectorField] = None

        self._output: Optional[VectorField] = None
        self._displacement: Optional[VectorField] = None
        self._stop_registration = False
        self.elapsed_iterations = 0
        self.metric = 0.0
        self.rms_change = 0.0

    def set_fixed_image(self, image: Image) -> None:
        self.fixed_image = image

    def set_moving_image(self, image: Image) -> None:
        self.moving_image = image

    def set_mask_image(self, mask: Optional[Image]) -> None:
        self.mask_image = mask

    def set_initial_field(self, field: Optional[VectorField]) -> None:
        self.initial_field = field

    @property
    def is_diffeomorphic(self) -> bool:
        return self.search_space in (SearchSpace.DIFFEOMORPHIC, SearchSpace.SYMMETRIC_DIFFEOMORPHIC)

    def stop_registration(self) -> None:
        """Requests the iteration to stop. Takes effect at the next iteration boundary."""
        self._stop_registration = True

    def get_output(self) -> Optional[VectorField]:
        """Current field: the displacement field, or the velocity field in the diffeomorphic search spaces."""
        return self._output

    def get_displacement_field(self) -> Optional[VectorField]:
        if self.is_diffeomorphic:
            return self._displacement
        return self._output

    def get_velocity_field(self) -> Optional[VectorField]:
        if self.is_diffeomorphic:
            return self._output
        return None

    def _exponentiate(self, field: VectorField) -> VectorField:
        return exponentiate(field, self.exponential_num_iterations, self.exponential_max_iterations)

    def initialize(self) -> None:
        """Validates the configuration and resets the output to the initial field.

        Raises
        ------
        ConfigurationError
            If the force function, the regularizer or one of the images is missing.
        DomainMismatchError
            If the initial field or the mask does not lie on the fixed image grid.
        """
        if self.force_function is None:
            raise ConfigurationError("No force function set.")
        if self.regularizer is None:
            raise ConfigurationError("No regularizer set.")
        if self.fixed_image is None or self.moving_image is None:
            raise ConfigurationError("Fixed and moving image have to be set.")
        if self.number_of_iterations < 0:
            raise ConfigurationError(f"The number of iterations has to be non-negative. Got {self.number_of_iterations}.")

        grid = self.fixed_image.grid
        if self.initial_field is not None:
            check_same_domain(grid, self.initial_field.grid, "initial field")
        if self.mask_image is not None:
            check_same_domain(grid, self.mask_image.grid, "mask image")

        if self.initial_field is not None:
            output = self.initial_field.clone()
        else:
            output = VectorField.zeros(grid, dtype=self.fixed_image.data.dtype, device=self.fixed_image.data.device)

        self._output = output
        self._displacement = self._exponentiate(output) if self.is_diffeomorphic else None
        self._stop_registration = False
        self.elapsed_iterations = 0
        self.metric = 0.0
        self.rms_change = 0.0

    def halt(self) -> bool:
        return self.elapsed_iterations >= self.number_of_iterations or self._stop_registration

    def run(self) -> VectorField:
        """Initializes, notifies the observers and runs iterations until :meth:`halt`. Returns the output."""
        self.initialize()
        self.notify(RegistrationEventType.INITIALIZE)
        while not self.halt():
            self.iterate()
        return self._output

    def _compute_update_field(self, fixed_image: Image, moving_image: Image, field: VectorField) -> torch.Tensor:
        """Runs the force function over the whole grid using a pool of workers."""
        force_function = self.force_function
        force_function.set_images(fixed_image, moving_image, field, self.mask_image)
        force_function.initialize_iteration()

        grid = fixed_image.grid
        update = torch.zeros((grid.ndim,) + grid.size, dtype=field.data.dtype, device=field.data.device)
        num_workers = max(1, min(self.num_threads, grid.size[0]))
        regions: List[tuple] = []
        for rows in chunks(range(grid.size[0]), num_workers):
            regions.append((slice(rows.start, rows.stop),) + tuple(slice(None) for _ in grid.size[1:]))

        def compute_region(region: tuple) -> None:
            global_data = force_function.get_global_data_pointer()
            update[(slice(None),) + region] = force_function.compute_update(region, global_data)
            force_function.release_global_data_pointer(global_data)

        if num_workers == 1:
            compute_region(regions[0])
        else:
            with ThreadPoolExecutor(max_workers=num_workers) as executor:
                # Consume the results so that worker exceptions are raised here.
                list(executor.map(compute_region, regions))

        if force_function.number_of_guarded_pixels:
            self.logger.debug(
                "Level %d, iteration %d: %d of %d voxels without update.",
                self.current_level,
                self.elapsed_iterations,
                force_function.number_of_guarded_pixels,
                grid.number_of_voxels,
            )
        return update

    def _symmetric_update_field(self) -> torch.Tensor:
        velocity = self._output
        forward_half = self._exponentiate(VectorField(0.5 * velocity.data, velocity.grid))
        backward_half = self._exponentiate(VectorField(-0.5 * velocity.data, velocity.grid))
        fixed_half = warp_image(self.fixed_image, backward_half)
        moving_half = warp_image(self.moving_image, forward_half)
        zero_field = VectorField.zeros(velocity.grid, dtype=velocity.data.dtype, device=velocity.data.device)

        forward = self._compute_update_field(fixed_half, moving_half, zero_field)
        metric, rms_change = self.force_function.metric, self.force_function.rms_change
        backward = self._compute_update_field(moving_half, fixed_half, zero_field)
        self.force_function.metric, self.force_function.rms_change = metric, rms_change
        return 0.5 * (forward - backward)

    def iterate(self) -> None:
        """Performs a single iteration and publishes the new field."""
        current = self._output
        if self.search_space == SearchSpace.SYMMETRIC_DIFFEOMORPHIC:
            update = self._symmetric_update_field()
        elif self.search_space == SearchSpace.DIFFEOMORPHIC:
            update = self._compute_update_field(self.fixed_image, self.moving_image, self._displacement)
        else:
            update = self._compute_update_field(self.fixed_image, self.moving_image, current)

        if self.smooth_update_field:
            update = self.regularizer.regularize(VectorField(update, current.grid)).data

        field = VectorField(current.data + self.force_function.compute_global_time_step() * update, current.grid)
        if self.smooth_displacement_field:
            field = self.regularizer.regularize(field)

        displacement = self._exponentiate(field) if self.is_diffeomorphic else None

        self._output = field
        self._displacement = displacement
        self.metric = self.force_function.metric
        self.rms_change = self.force_function.rms_change
        self.elapsed_iterations += 1
        self.notify(
            RegistrationEventType.ITERATION,
            IterationRecord(self.current_level, self.elapsed_iterations, self.metric, self.rms_change),
        )
