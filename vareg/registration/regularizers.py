# Copyright (c) VaReg Contributors

"""Regularizers smoothing displacement, velocity or update fields.

All regularizers keep the grid of the field and extend it by replication or mirroring at the boundary.
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence, Union

import torch

from vareg.data.image import VectorField
from vareg.functionals.smooth import gaussian_smooth
from vareg.types import VaregEnum
from vareg.utils import expand_per_axis

__all__ = [
    "DiffusionRegularizer",
    "ElasticRegularizer",
    "GaussianRegularizer",
    "Regularizer",
    "RegularizerType",
    "solve_neumann_tridiagonal",
]


class RegularizerType(VaregEnum):
    GAUSSIAN = "gaussian"
    DIFFUSION = "diffusion"
    ELASTIC = "elastic"


class Regularizer:
    """Base class of the regularizers.

    Parameters
    ----------
    use_image_spacing : bool
        If True, regularization parameters are interpreted in physical units. Default: True.
    time_step : float
        Time step of the registration, used by the implicit solvers. Default: 1.0.
    """

    def __init__(self, use_image_spacing: bool = True, time_step: float = 1.0) -> None:
        self.logger = logging.getLogger(type(self).__name__)
        self.use_image_spacing = use_image_spacing
        self.time_step = time_step

    def regularize(self, field: VectorField) -> VectorField:
        """Returns the regularized field on the grid of `field`. The input is not modified."""
        spacing = field.grid.spacing if self.use_image_spacing else (1.0,) * field.grid.ndim
        return VectorField(self._regularize(field.data, spacing), field.grid)

    def _regularize(self, data: torch.Tensor, spacing: Sequence[float]) -> torch.Tensor:
        raise NotImplementedError(f"Nested classes of {self.__class__.__name__} should implement this method.")


class GaussianRegularizer(Regularizer):
    """Separable Gaussian smoothing of each field component.

    Parameters
    ----------
    standard_deviations : float or list of float
        Isotropic or per-axis standard deviation, in physical units if `use_image_spacing` is True and in voxels
        otherwise. Default: 1.0.
    maximum_error : float
        Bound on the truncated Gaussian mass. Default: 0.01.
    maximum_kernel_width : int
        Maximum number of kernel taps. Default: 32.
    **kwargs
        Arguments of :class:`Regularizer`.
    """

    def __init__(
        self,
        standard_deviations: Union[float, List[float]] = 1.0,
        maximum_error: float = 0.01,
        maximum_kernel_width: int = 32,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.standard_deviations = standard_deviations
        self.maximum_error = maximum_error
        self.maximum_kernel_width = maximum_kernel_width

    def _regularize(self, data, spacing):
        standard_deviations = expand_per_axis(self.standard_deviations, len(spacing))
        sigmas = [sigma / step for sigma, step in zip(standard_deviations, spacing)]
        return gaussian_smooth(data, sigmas, self.maximum_error, self.maximum_kernel_width)


def solve_neumann_tridiagonal(data: torch.Tensor, coefficient: float, axis: int) -> torch.Tensor:
    """Solves `(I - c D2) u = data` along `axis` with reflecting boundaries using the Thomas algorithm.

    `D2` is the three point second difference. All lines along `axis` are solved at once.

    Parameters
    ----------
    data : torch.Tensor
        Right hand side of arbitrary shape.
    coefficient : float
        Non-negative diffusion coefficient `c`.
    axis : int
        Axis along which the lines run.

    Returns
    -------
    torch.Tensor
        Solution with the same shape as `data`.
    """
    length = data.shape[axis]
    if length == 1 or coefficient == 0.0:
        return data.clone()

    rhs = data.movedim(axis, 0)
    off_diagonal = -coefficient
    diagonal = [1.0 + 2.0 * coefficient] * length
    diagonal[0] = diagonal[-1] = 1.0 + coefficient

    # Forward elimination; the coefficients are scalars shared by all lines.
    modified_upper = [0.0] * length
    modified_rhs = [rhs[0] / diagonal[0]]
    modified_upper[0] = off_diagonal / diagonal[0]
    for index in range(1, length):
        pivot = diagonal[index] - off_diagonal * modified_upper[index - 1]
        modified_upper[index] = off_diagonal / pivot
        modified_rhs.append((rhs[index] - off_diagonal * modified_rhs[index - 1]) / pivot)

    solution = [None] * length
    solution[-1] = modified_rhs[-1]
    for index in range(length - 2, -1, -1):
        solution[index] = modified_rhs[index] - modified_upper[index] * solution[index + 1]
    return torch.stack(solution, dim=0).movedim(0, axis)


class DiffusionRegularizer(Regularizer):
    """Implicit diffusion `(I - tau alpha Laplace) u = u_in`, solved axis after axis.

    Each axis pass solves the one dimensional implicit step on the output of the previous pass.

    Parameters
    ----------
    alpha : float
        Regularization weight. Default: 0.5.
    **kwargs
        Arguments of :class:`Regularizer`.
    """

    def __init__(self, alpha: float = 0.5, **kwargs) -> None:
        super().__init__(**kwargs)
        if alpha < 0:
            raise ValueError(f"alpha has to be non-negative. Got {alpha}.")
        self.alpha = alpha

    def _regularize(self, data, spacing):
        for axis, step in enumerate(spacing):
            coefficient = self.time_step * self.alpha / step**2
            data = solve_neumann_tridiagonal(data, coefficient, axis + 1)
        return data


class ElasticRegularizer(Regularizer):
    """Implicit linear elastic step `(I - tau (mu Laplace + (mu + lambda) grad div)) u = u_in`.

    The system is solved in the Fourier domain of the mirror-extended field, which corresponds to reflecting
    boundaries. Per frequency the operator reads `a I + b s s^T` and is inverted in closed form.

    Parameters
    ----------
    mu : float
        First Lame parameter (shear). Default: 0.5.
    lambda_ : float
        Second Lame parameter (dilation). Default: 0.5.
    **kwargs
        Arguments of :class:`Regularizer`.
    """

    def __init__(self, mu: float = 0.5, lambda_: float = 0.5, **kwargs) -> None:
        super().__init__(**kwargs)
        if mu < 0 or mu + lambda_ < 0:
            raise ValueError(f"Lame parameters need mu >= 0 and mu + lambda >= 0. Got mu={mu}, lambda={lambda_}.")
        self.mu = mu
        self.lambda_ = lambda_

    def _regularize(self, data, spacing):
        ndim = data.shape[0]
        size = data.shape[1:]
        spatial_dims = tuple(range(1, ndim + 1))

        extended = data
        for axis in spatial_dims:
            extended = torch.cat([extended, extended.flip(axis)], dim=axis)
        spectrum = torch.fft.fftn(extended, dim=spatial_dims)

        laplacian = torch.zeros(extended.shape[1:], dtype=data.dtype, device=data.device)
        sines = []
        for axis, step in enumerate(spacing):
            frequency = 2.0 * math.pi * torch.arange(2 * size[axis], dtype=data.dtype, device=data.device)
            frequency = frequency / (2 * size[axis])
            view = [1] * ndim
            view[axis] = -1
            laplacian = laplacian + (2.0 * (torch.cos(frequency) - 1.0) / step**2).view(view)
            sines.append((torch.sin(frequency) / step).view(view).expand(extended.shape[1:]))
        sines = torch.stack(sines, dim=0)

        diagonal = 1.0 - self.time_step * self.mu * laplacian
        rank_one = self.time_step * (self.mu + self.lambda_)
        projection = (sines * spectrum).sum(dim=0)
        norm = (sines**2).sum(dim=0)
        solution = (spectrum - rank_one * sines * (projection / (diagonal + rank_one * norm))) / diagonal

        regularized = torch.fft.ifftn(solution, dim=spatial_dims).real
        for axis in spatial_dims:
            regularized = regularized.narrow(axis, 0, size[axis - 1])
        return regularized.contiguous()
