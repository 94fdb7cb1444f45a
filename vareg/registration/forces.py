# Copyright (c) VaReg Contributors

"""Force functions computing the per-voxel update of a variational registration.

A force function is prepared once per iteration with :meth:`ForceFunction.initialize_iteration` and then evaluated
on disjoint regions of the fixed image grid, possibly from several threads at the same time. Each thread collects
its statistics in its own :class:`GlobalData` which is merged into the shared metric under a lock.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Optional, Tuple

import torch

from vareg.data.image import Image, VectorField, check_same_domain
from vareg.exceptions import ConfigurationError
from vareg.functionals.grad import spatial_gradient
from vareg.functionals.smooth import box_mean
from vareg.registration.warp import warp_image
from vareg.types import VaregEnum

__all__ = ["DemonsForce", "ForceFunction", "ForceType", "GlobalData", "GradientType", "NCCForce", "SSDForce"]

Region = Tuple[slice, ...]


class ForceType(VaregEnum):
    DEMONS = "demons"
    SSD = "ssd"
    NCC = "ncc"


class GradientType(VaregEnum):
    WARPED = "warped"
    FIXED = "fixed"
    SYMMETRIC = "symmetric"


@dataclass
class GlobalData:
    """Statistics collected by a single worker during one pass."""

    sum_of_metric_values: float = 0.0
    number_of_pixels_processed: int = 0
    sum_of_squared_change: float = 0.0
    number_of_guarded_pixels: int = 0


class ForceFunction:
    """Base class of the force functions.

    Subclasses implement :meth:`_compute_force`, which maps the intensity difference and the image gradient of a
    region onto an update, a per-voxel metric value and a validity mask.

    Parameters
    ----------
    gradient_type : GradientType
        Image whose gradient drives the force: the warped moving image (GradientType.WARPED), the fixed image
        (GradientType.FIXED) or the average of both (GradientType.SYMMETRIC). Default: GradientType.WARPED.
    time_step : float
        Time step of the update. Default: 1.0.
    intensity_difference_threshold : float
        Voxels whose absolute intensity difference is below this value get a zero update. Default: 0.001.
    denominator_threshold : float
        Voxels whose force denominator is below this value get a zero update. Default: 1e-9.
    mask_background_threshold : float
        Mask values at or below this value are excluded from the update and the metric. Default: 0.0.
    """

    def __init__(
        self,
        gradient_type: GradientType = GradientType.WARPED,
        time_step: float = 1.0,
        intensity_difference_threshold: float = 0.001,
        denominator_threshold: float = 1e-9,
        mask_background_threshold: float = 0.0,
    ) -> None:
        self.logger = logging.getLogger(type(self).__name__)
        self.gradient_type = gradient_type
        self.time_step = time_step
        self.intensity_difference_threshold = intensity_difference_threshold
        self.denominator_threshold = denominator_threshold
        self.mask_background_threshold = mask_background_threshold

        self.fixed_image: Optional[Image] = None
        self.moving_image: Optional[Image] = None
        self.field: Optional[VectorField] = None
        self.mask_image: Optional[Image] = None

        self._lock = threading.Lock()
        self._global_data = GlobalData()
        self._warped_image: Optional[torch.Tensor] = None
        self._gradient: Optional[torch.Tensor] = None
        self._foreground: Optional[torch.Tensor] = None
        self.normalizer = 1.0
        self.metric = 0.0
        self.rms_change = 0.0

    def set_images(
        self,
        fixed_image: Image,
        moving_image: Image,
        field: VectorField,
        mask_image: Optional[Image] = None,
    ) -> None:
        self.fixed_image = fixed_image
        self.moving_image = moving_image
        self.field = field
        self.mask_image = mask_image

    @property
    def warped_image(self) -> Optional[torch.Tensor]:
        """Moving image warped onto the fixed grid during the last :meth:`initialize_iteration`."""
        return self._warped_image

    def initialize_iteration(self) -> None:
        """Prepares a pass: warps the moving image and computes gradients and normalizer.

        Raises
        ------
        ConfigurationError
            If the images or the field have not been set.
        DomainMismatchError
            If the field or the mask does not lie on the fixed image grid.
        """
        if self.fixed_image is None or self.moving_image is None or self.field is None:
            raise ConfigurationError("Fixed image, moving image and field have to be set before computing forces.")
        grid = self.fixed_image.grid
        check_same_domain(grid, self.field.grid, "displacement field")
        if self.mask_image is not None:
            check_same_domain(grid, self.mask_image.grid, "mask image")

        self._warped_image = warp_image(self.moving_image, self.field).data.to(self.fixed_image.data.dtype)
        self.normalizer = sum(spacing**2 for spacing in grid.spacing) / grid.ndim

        if self.gradient_type == GradientType.FIXED:
            self._gradient = spatial_gradient(self.fixed_image.data, grid.spacing)
        elif self.gradient_type == GradientType.SYMMETRIC:
            self._gradient = 0.5 * (
                spatial_gradient(self.fixed_image.data, grid.spacing)
                + spatial_gradient(self._warped_image, grid.spacing)
            )
        else:
            self._gradient = spatial_gradient(self._warped_image, grid.spacing)

        if self.mask_image is not None:
            self._foreground = self.mask_image.data > self.mask_background_threshold
        else:
            self._foreground = None

        self._global_data = GlobalData()
        self.metric = 0.0
        self.rms_change = 0.0
        self._prepare()

    def _prepare(self) -> None:
        """Hook for per-iteration precomputations of the subclasses."""

    def get_global_data_pointer(self) -> GlobalData:
        return GlobalData()

    def release_global_data_pointer(self, global_data: GlobalData) -> None:
        """Merges the statistics of a worker into the metric and RMS change of the pass."""
        with self._lock:
            merged = self._global_data
            merged.sum_of_metric_values += global_data.sum_of_metric_values
            merged.number_of_pixels_processed += global_data.number_of_pixels_processed
            merged.sum_of_squared_change += global_data.sum_of_squared_change
            merged.number_of_guarded_pixels += global_data.number_of_guarded_pixels

            if merged.number_of_pixels_processed > 0:
                self.metric = merged.sum_of_metric_values / merged.number_of_pixels_processed
                self.rms_change = math.sqrt(merged.sum_of_squared_change / merged.number_of_pixels_processed)
            else:
                self.metric = 0.0
                self.rms_change = 0.0

    @property
    def number_of_guarded_pixels(self) -> int:
        return self._global_data.number_of_guarded_pixels

    def compute_global_time_step(self) -> float:
        return self.time_step

    def compute_update(self, region: Region, global_data: GlobalData) -> torch.Tensor:
        """Computes the update of all voxels of `region`.

        Parameters
        ----------
        region : tuple of slice
            Rectangular region of the fixed image grid.
        global_data : GlobalData
            Statistics of the calling worker.

        Returns
        -------
        torch.Tensor
            Update of shape (N, \\*R) where R is the shape of the region. The time step is not applied.
        """
        fixed = self.fixed_image.data[region]
        warped = self._warped_image[region]
        gradient = self._gradient[(slice(None),) + region]
        speed = fixed - warped

        if self._foreground is not None:
            foreground = self._foreground[region]
        else:
            foreground = torch.ones_like(speed, dtype=torch.bool)

        update, metric_values, valid = self._compute_force(region, speed, gradient)
        active = foreground & valid & (speed.abs() >= self.intensity_difference_threshold)
        update = torch.where(active.unsqueeze(0), update, torch.zeros_like(update))

        global_data.sum_of_metric_values += float(metric_values[foreground].sum())
        global_data.number_of_pixels_processed += int(foreground.sum())
        global_data.sum_of_squared_change += float((update**2).sum())
        global_data.number_of_guarded_pixels += int((foreground & ~active).sum())
        return update

    def _compute_force(
        self, region: Region, speed: torch.Tensor, gradient: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        raise NotImplementedError(f"Nested classes of {self.__class__.__name__} should implement this method.")


class DemonsForce(ForceFunction):
    """Demons force `(F - M o phi) grad / (|grad|^2 + k (F - M o phi)^2)`.

    The normalizer `k` is the mean squared spacing of the fixed image which makes both terms of the denominator
    share the same units.
    """

    def _compute_force(self, region, speed, gradient):
        denominator = (gradient**2).sum(dim=0) + self.normalizer * speed**2
        valid = denominator >= self.denominator_threshold
        denominator = torch.where(valid, denominator, torch.ones_like(denominator))
        return gradient * (speed / denominator), speed**2, valid


class SSDForce(ForceFunction):
    """Sum of squared differences force `(F - M o phi) grad`."""

    def _compute_force(self, region, speed, gradient):
        return gradient * speed, speed**2, torch.ones_like(speed, dtype=torch.bool)


class NCCForce(ForceFunction):
    """Local normalized cross correlation force.

    Local statistics are computed over a box of `2 * radius + 1` voxels per axis. The metric of a voxel is
    `1 - cc` with `cc` the squared local correlation coefficient.

    Parameters
    ----------
    radius : int
        Radius of the local window. Default: 2.
    **kwargs
        Arguments of :class:`ForceFunction`.
    """

    def __init__(self, radius: int = 2, **kwargs) -> None:
        super().__init__(**kwargs)
        if radius < 1:
            raise ConfigurationError(f"The NCC radius has to be at least one. Got {radius}.")
        self.radius = radius
        self._statistics: Optional[torch.Tensor] = None

    def _prepare(self) -> None:
        fixed = self.fixed_image.data
        warped = self._warped_image
        fixed_mean = box_mean(fixed, self.radius)
        warped_mean = box_mean(warped, self.radius)
        sff = box_mean(fixed * fixed, self.radius) - fixed_mean**2
        smm = box_mean(warped * warped, self.radius) - warped_mean**2
        sfm = box_mean(fixed * warped, self.radius) - fixed_mean * warped_mean
        self._statistics = torch.stack([fixed_mean, warped_mean, sff, smm, sfm], dim=0)

    def _compute_force(self, region, speed, gradient):
        fixed_mean, warped_mean, sff, smm, sfm = self._statistics[(slice(None),) + region]
        fixed = self.fixed_image.data[region]
        warped = self._warped_image[region]

        denominator = sff * smm
        valid = denominator >= self.denominator_threshold
        denominator = torch.where(valid, denominator, torch.ones_like(denominator))
        smm = torch.where(valid, smm, torch.ones_like(smm))

        factor = 2.0 * sfm / denominator * ((fixed - fixed_mean) - sfm / smm * (warped - warped_mean))
        correlation = torch.where(valid, sfm**2 / denominator, torch.ones_like(denominator))
        return gradient * factor, 1.0 - correlation, valid
