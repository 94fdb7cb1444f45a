# Copyright (c) VaReg Contributors

"""Warping, resampling and exponentiation of images and vector fields living on physical grids.

Displacements are stored in physical units along the array axes of their grid. Sampling uses bilinear (2D) or
trilinear (3D) interpolation with continuous border extension.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import torch
import torch.nn.functional as F

from vareg.data.image import Grid, Image, VectorField

__all__ = [
    "create_grid",
    "exponential_iterations",
    "exponentiate",
    "normalize_coordinates",
    "resample_field",
    "resample_image",
    "sample",
    "warp_image",
    "warp_tensor",
]


def create_grid(size: Sequence[int], dtype: torch.dtype = torch.float32, device: Optional[torch.device] = None):
    """Creates a grid of voxel indices for a given size.

    Parameters
    ----------
    size : sequence of int
        Spatial size (\\*D) of length N.
    dtype : torch.dtype
        Data type of the grid. Default: torch.float32.
    device : torch.device, optional
        Device to create the grid on.

    Returns
    -------
    torch.Tensor
        Grid tensor of shape (\\*D, N), entry `[..., k]` is the index along array axis `k`.
    """
    mesh = torch.meshgrid(*[torch.arange(0, dim, dtype=dtype, device=device) for dim in size], indexing="ij")
    return torch.stack(mesh, dim=-1)


def normalize_coordinates(coordinates: torch.Tensor, size: Sequence[int]) -> torch.Tensor:
    """Maps continuous voxel indices to the [-1, 1] range expected by :func:`torch.nn.functional.grid_sample`.

    Parameters
    ----------
    coordinates : torch.Tensor
        Continuous indices of shape (\\*, N) in array-axis order.
    size : sequence of int
        Size of the sampled tensor.

    Returns
    -------
    torch.Tensor
        Normalized coordinates of shape (\\*, N) in reversed (x, y, z) order.
    """
    scale = torch.tensor([2.0 / max(dim - 1, 1) for dim in size], dtype=coordinates.dtype, device=coordinates.device)
    return (coordinates * scale - 1.0).flip(-1)


def sample(data: torch.Tensor, coordinates: torch.Tensor, mode: str = "bilinear") -> torch.Tensor:
    """Samples a multichannel tensor at continuous voxel indices with border extension.

    Parameters
    ----------
    data : torch.Tensor
        Tensor of shape (C, \\*D) with N spatial dimensions.
    coordinates : torch.Tensor
        Continuous indices into `data` of shape (\\*D', N).
    mode : str
        Interpolation mode, "bilinear" or "nearest". Default: "bilinear".

    Returns
    -------
    torch.Tensor
        Sampled tensor of shape (C, \\*D').
    """
    spatial_size = data.shape[1:]
    if coordinates.shape[-1] != len(spatial_size):
        raise ValueError(
            f"Expected coordinates with {len(spatial_size)} components. Received shape {tuple(coordinates.shape)}."
        )
    grid = normalize_coordinates(coordinates.to(data.dtype), spatial_size)
    output = F.grid_sample(data[None], grid[None], mode=mode, padding_mode="border", align_corners=True)
    return output[0]


def warp_tensor(data: torch.Tensor, displacement: torch.Tensor, spacing: Sequence[float]) -> torch.Tensor:
    """Applies a displacement to a tensor living on the same grid as the displacement.

    Parameters
    ----------
    data : torch.Tensor
        Tensor of shape (C, \\*D).
    displacement : torch.Tensor
        Physical displacement of shape (N, \\*D).
    spacing : sequence of float
        Grid spacing per array axis.

    Returns
    -------
    torch.Tensor
        Tensor of shape (C, \\*D) holding `data(x + displacement(x))`.
    """
    if data.shape[1:] != displacement.shape[1:]:
        raise ValueError(
            f"Expected the input tensor to have the same spatial dimensions as the vector field. "
            f"Instead, received shapes {data.shape} and {displacement.shape} for the input tensor and vector field, "
            f"respectively."
        )
    spacing_tensor = torch.tensor(spacing, dtype=displacement.dtype, device=displacement.device)
    grid = create_grid(displacement.shape[1:], displacement.dtype, displacement.device)
    return sample(data, grid + displacement.movedim(0, -1) / spacing_tensor)


def _source_coordinates(target_grid: Grid, source_grid: Grid, displacement: Optional[torch.Tensor], dtype, device):
    coordinates = create_grid(target_grid.size, dtype, device)
    if displacement is not None:
        spacing = torch.tensor(target_grid.spacing, dtype=dtype, device=device)
        coordinates = coordinates + displacement.movedim(0, -1).to(dtype) / spacing
    if source_grid.same_domain(target_grid):
        return coordinates
    return source_grid.physical_to_index(target_grid.index_to_physical(coordinates))


def warp_image(image: Image, field: VectorField, mode: str = "bilinear") -> Image:
    """Resamples `image` through `field`: the output at grid point x of the field is `image(x + u(x))`.

    The output lives on the grid of the field, whatever the grid of the input image. A zero field on the grid of the
    image returns an exact copy of the image.

    Parameters
    ----------
    image : Image
        Image to warp, e.g. the moving image.
    field : VectorField
        Displacement field on the output grid.
    mode : str
        Interpolation mode. Default: "bilinear".

    Returns
    -------
    Image
    """
    if image.grid.same_domain(field.grid) and not torch.any(field.data):
        return Image(image.data.clone(), field.grid)
    coordinates = _source_coordinates(field.grid, image.grid, field.data, field.data.dtype, field.data.device)
    return Image(sample(image.data[None], coordinates, mode=mode)[0], field.grid)


def resample_image(image: Image, target_grid: Grid, mode: str = "bilinear") -> Image:
    """Samples `image` at the physical points of `target_grid`."""
    if image.grid.same_domain(target_grid):
        return Image(image.data.clone(), target_grid)
    coordinates = _source_coordinates(target_grid, image.grid, None, image.data.dtype, image.data.device)
    return Image(sample(image.data[None], coordinates, mode=mode)[0], target_grid)


def resample_field(field: VectorField, target_grid: Grid) -> VectorField:
    """Samples `field` at the physical points of `target_grid`.

    The vector values are physical and are not rescaled. Components are only rotated when the two grids have
    different directions.

    Parameters
    ----------
    field : VectorField
        Field to resample.
    target_grid : Grid
        Grid of the output field.

    Returns
    -------
    VectorField
    """
    if field.grid.ndim != target_grid.ndim:
        raise ValueError(f"Cannot resample a {field.grid.ndim}D field onto a {target_grid.ndim}D grid.")
    coordinates = _source_coordinates(target_grid, field.grid, None, field.data.dtype, field.data.device)
    data = sample(field.data, coordinates)
    if field.grid.direction != target_grid.direction:
        rotation = target_grid.direction_tensor(data.dtype, data.device).T @ field.grid.direction_tensor(
            data.dtype, data.device
        )
        data = torch.einsum("ab,b...->a...", rotation, data)
    return VectorField(data, target_grid)


def exponential_iterations(field: VectorField, max_iterations: int = 20) -> int:
    """Number of squaring steps needed to exponentiate `field`.

    The count is chosen such that the scaled field moves no voxel by more than roughly half a voxel:
    `ceil(2 + log2(max |v|_voxel))`, clamped to [0, `max_iterations`].

    Parameters
    ----------
    field : VectorField
        Velocity field.
    max_iterations : int
        Upper bound of the returned count. Default: 20.

    Returns
    -------
    int
    """
    ndim = field.grid.ndim
    spacing = torch.tensor(field.grid.spacing, dtype=field.data.dtype, device=field.data.device)
    squared_norm = ((field.data / spacing.view(ndim, *([1] * ndim))) ** 2).sum(dim=0)
    max_squared_norm = float(squared_norm.max())
    if max_squared_norm <= 0.0:
        return 0
    num_iterations = math.ceil(2.0 + 0.5 * math.log2(max_squared_norm))
    return int(min(max(num_iterations, 0), max_iterations))


def exponentiate(
    field: VectorField,
    num_iterations: Optional[int] = None,
    max_iterations: int = 20,
) -> VectorField:
    """Integrates a stationary velocity field using scaling and squaring.

    The velocity is scaled by `2 ** -n` and composed with itself `n` times, `v <- v + v(x + v(x))`. The input field
    is not modified.

    Parameters
    ----------
    field : VectorField
        Velocity field.
    num_iterations : int, optional
        Fixed number of squaring steps. If None, the number is computed with :func:`exponential_iterations`.
    max_iterations : int
        Upper bound of the automatic number of squaring steps. Default: 20.

    Returns
    -------
    VectorField
        Displacement field of the exponential map on the grid of `field`.
    """
    if num_iterations is None:
        num_iterations = exponential_iterations(field, max_iterations)

    vector = field.data / (2.0**num_iterations)
    for _ in range(num_iterations):
        vector = vector + warp_tensor(vector, vector, field.grid.spacing)
    return VectorField(vector, field.grid)
