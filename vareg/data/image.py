# Copyright (c) VaReg Contributors

"""Image and vector field containers living on a physical grid.

All per-axis tuples (size, spacing, origin and the columns of the direction matrix) are stored in array-axis order,
i.e. in the order of the tensor dimensions. For a SimpleITK image this is the reverse of its (x, y, z) order.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import torch

from vareg.exceptions import DomainMismatchError
from vareg.utils.asserts import assert_spatial_dimensions

__all__ = ["Grid", "Image", "VectorField", "check_same_domain"]

GRID_TOLERANCE = 1e-6


def _identity(ndim: int) -> Tuple[Tuple[float, ...], ...]:
    return tuple(tuple(1.0 if row == col else 0.0 for col in range(ndim)) for row in range(ndim))


@dataclass(frozen=True)
class Grid:
    """Sampling grid of an image or field.

    Parameters
    ----------
    size : tuple of int
        Number of samples per array axis.
    spacing : tuple of float
        Physical distance between samples per array axis.
    origin : tuple of float
        Physical location of the first sample.
    direction : tuple of tuple of float, optional
        Orthonormal matrix whose column `b` is the physical direction of array axis `b`. Default: identity.
    """

    size: Tuple[int, ...]
    spacing: Tuple[float, ...]
    origin: Tuple[float, ...]
    direction: Optional[Tuple[Tuple[float, ...], ...]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "size", tuple(int(_) for _ in self.size))
        object.__setattr__(self, "spacing", tuple(float(_) for _ in self.spacing))
        object.__setattr__(self, "origin", tuple(float(_) for _ in self.origin))
        if self.direction is None:
            object.__setattr__(self, "direction", _identity(len(self.size)))
        else:
            object.__setattr__(self, "direction", tuple(tuple(float(_) for _ in row) for row in self.direction))

        if not len(self.size) == len(self.spacing) == len(self.origin) == len(self.direction):
            raise ValueError(
                f"Size, spacing, origin and direction need the same dimensionality. Got {self.size}, "
                f"{self.spacing}, {self.origin} and {self.direction}."
            )
        if any(_ <= 0 for _ in self.size):
            raise ValueError(f"Grid size has to be positive. Got {self.size}.")
        if any(_ <= 0 for _ in self.spacing):
            raise ValueError(f"Grid spacing has to be positive. Got {self.spacing}.")

    @classmethod
    def from_shape(
        cls,
        shape: Sequence[int],
        spacing: Optional[Sequence[float]] = None,
        origin: Optional[Sequence[float]] = None,
    ) -> Grid:
        """Grid with unit spacing and zero origin unless specified otherwise."""
        ndim = len(shape)
        return cls(
            size=tuple(shape),
            spacing=tuple(spacing) if spacing is not None else (1.0,) * ndim,
            origin=tuple(origin) if origin is not None else (0.0,) * ndim,
        )

    @property
    def ndim(self) -> int:
        return len(self.size)

    @property
    def number_of_voxels(self) -> int:
        return math.prod(self.size)

    @property
    def is_axis_aligned(self) -> bool:
        return self.direction == _identity(self.ndim)

    def direction_tensor(self, dtype: torch.dtype = torch.float32, device: Optional[torch.device] = None):
        return torch.tensor(self.direction, dtype=dtype, device=device)

    def index_to_physical(self, index: torch.Tensor) -> torch.Tensor:
        """Map continuous indices of shape (..., N) to physical points of shape (..., N)."""
        spacing = torch.tensor(self.spacing, dtype=index.dtype, device=index.device)
        origin = torch.tensor(self.origin, dtype=index.dtype, device=index.device)
        scaled = index * spacing
        if not self.is_axis_aligned:
            scaled = scaled @ self.direction_tensor(index.dtype, index.device).T
        return scaled + origin

    def physical_to_index(self, points: torch.Tensor) -> torch.Tensor:
        """Map physical points of shape (..., N) to continuous indices of shape (..., N)."""
        spacing = torch.tensor(self.spacing, dtype=points.dtype, device=points.device)
        origin = torch.tensor(self.origin, dtype=points.dtype, device=points.device)
        offset = points - origin
        if not self.is_axis_aligned:
            offset = offset @ self.direction_tensor(points.dtype, points.device)
        return offset / spacing

    def downsample(self, factors: Sequence[int]) -> Grid:
        """Grid of a pyramid level shrunk by integer `factors`, keeping the physical extent centered.

        Parameters
        ----------
        factors : sequence of int
            Shrink factor per array axis.

        Returns
        -------
        Grid
        """
        if len(factors) != self.ndim:
            raise ValueError(f"Expected {self.ndim} shrink factors, got {len(factors)}.")
        size = tuple(max(int(math.floor(n / f)), 1) for n, f in zip(self.size, factors))
        spacing = tuple(s * f for s, f in zip(self.spacing, factors))
        shift = [0.5 * (new - old) for new, old in zip(spacing, self.spacing)]
        origin = tuple(
            o + sum(self.direction[row][col] * shift[col] for col in range(self.ndim))
            for row, o in enumerate(self.origin)
        )
        return Grid(size=size, spacing=spacing, origin=origin, direction=self.direction)

    def same_domain(self, other: Grid, tolerance: float = GRID_TOLERANCE) -> bool:
        if self.size != other.size:
            return False
        pairs = list(zip(self.spacing, other.spacing)) + list(zip(self.origin, other.origin))
        pairs += [(a, b) for row, other_row in zip(self.direction, other.direction) for a, b in zip(row, other_row)]
        return all(math.isclose(a, b, rel_tol=tolerance, abs_tol=tolerance) for a, b in pairs)


def check_same_domain(expected: Grid, received: Grid, name: str) -> None:
    """Raise :class:`DomainMismatchError` if `received` differs from `expected`.

    Parameters
    ----------
    expected : Grid
        Reference grid, usually the grid of the fixed image.
    received : Grid
        Grid to check.
    name : str
        Name of the checked object, used in the error message.
    """
    if not expected.same_domain(received):
        raise DomainMismatchError(f"The {name} does not lie on the fixed image grid.", expected, received)


@dataclass
class Image:
    """Scalar image with tensor `data` of shape `grid.size`."""

    data: torch.Tensor
    grid: Grid

    def __post_init__(self) -> None:
        assert_spatial_dimensions(self.grid.ndim)
        if tuple(self.data.shape) != self.grid.size:
            raise ValueError(f"Image data of shape {tuple(self.data.shape)} does not match grid size {self.grid.size}.")

    @classmethod
    def from_tensor(cls, data: torch.Tensor, spacing=None, origin=None) -> Image:
        return cls(data, Grid.from_shape(data.shape, spacing=spacing, origin=origin))

    def clone(self) -> Image:
        return Image(self.data.clone(), self.grid)


@dataclass
class VectorField:
    """Displacement or velocity field with tensor `data` of shape (N, \\*grid.size).

    Component `k` holds the physical displacement along array axis `k`.
    """

    data: torch.Tensor
    grid: Grid

    def __post_init__(self) -> None:
        assert_spatial_dimensions(self.grid.ndim)
        if tuple(self.data.shape) != (self.grid.ndim,) + self.grid.size:
            raise ValueError(
                f"Field data of shape {tuple(self.data.shape)} does not match grid size {self.grid.size} "
                f"with {self.grid.ndim} components."
            )

    @classmethod
    def zeros(cls, grid: Grid, dtype: torch.dtype = torch.float32, device: Optional[torch.device] = None):
        return cls(torch.zeros((grid.ndim,) + grid.size, dtype=dtype, device=device), grid)

    def clone(self) -> VectorField:
        return VectorField(self.data.clone(), self.grid)
