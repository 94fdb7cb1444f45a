# Copyright (c) VaReg Contributors

"""vareg.functionals.smooth module.

This module contains separable smoothing filters with replicate boundary extension."""

from __future__ import annotations

import math
from typing import Sequence

import torch
import torch.nn.functional as F

from vareg.utils.asserts import assert_positive_integer, assert_spatial_dimensions

__all__ = ["binary_dilate", "box_mean", "gaussian_kernel1d", "gaussian_smooth", "separable_convolve"]


def gaussian_kernel1d(
    sigma: float,
    maximum_error: float = 0.01,
    maximum_kernel_width: int = 32,
    dtype: torch.dtype = torch.float64,
) -> torch.Tensor:
    """Sampled and normalized one dimensional Gaussian kernel.

    The radius is the smallest one for which the discarded tail mass is below `maximum_error`, but the total width
    never exceeds `maximum_kernel_width`.

    Parameters
    ----------
    sigma : float
        Standard deviation in samples. A non-positive value yields the identity kernel.
    maximum_error : float
        Bound on the truncated Gaussian mass. Default: 0.01.
    maximum_kernel_width : int
        Maximum number of taps. Default: 32.
    dtype : torch.dtype
        Data type of the kernel. Default: torch.float64.

    Returns
    -------
    torch.Tensor
        Kernel of odd length summing to one.
    """
    if sigma <= 0:
        return torch.ones(1, dtype=dtype)
    if maximum_kernel_width < 1:
        raise ValueError(f"maximum_kernel_width has to be at least one. Got {maximum_kernel_width}.")

    radius = 0
    while math.erfc((radius + 0.5) / (sigma * math.sqrt(2.0))) > maximum_error:
        if 2 * (radius + 1) + 1 > maximum_kernel_width:
            break
        radius += 1

    x = torch.arange(-radius, radius + 1, dtype=dtype)
    kernel = torch.exp(-(x**2) / (2.0 * sigma**2))
    return kernel / kernel.sum()


def separable_convolve(data: torch.Tensor, kernel: torch.Tensor, axis: int) -> torch.Tensor:
    """Convolve `data` along a single `axis` with a symmetric odd-length `kernel`, replicating the border.

    Parameters
    ----------
    data : torch.Tensor
        Tensor of arbitrary shape.
    kernel : torch.Tensor
        One dimensional symmetric kernel.
    axis : int
        Axis of `data` to filter.

    Returns
    -------
    torch.Tensor
        Filtered tensor with the same shape as `data`.
    """
    radius = (kernel.numel() - 1) // 2
    if radius == 0:
        return data * kernel[0].to(data)

    moved = data.movedim(axis, -1)
    shape = moved.shape
    rows = moved.reshape(-1, 1, shape[-1])
    rows = F.pad(rows, (radius, radius), mode="replicate")
    output = F.conv1d(rows, kernel.to(rows).view(1, 1, -1))
    return output.reshape(shape).movedim(-1, axis)


def gaussian_smooth(
    data: torch.Tensor,
    sigmas: Sequence[float],
    maximum_error: float = 0.01,
    maximum_kernel_width: int = 32,
) -> torch.Tensor:
    """Smooth the trailing `len(sigmas)` axes of `data` with a separable Gaussian.

    Parameters
    ----------
    data : torch.Tensor
        Tensor of shape (\\*, \\*D). Leading axes (e.g. vector components) are filtered independently.
    sigmas : sequence of float
        Standard deviation in samples per spatial axis.
    maximum_error : float
        Bound on the truncated Gaussian mass. Default: 0.01.
    maximum_kernel_width : int
        Maximum number of taps. Default: 32.

    Returns
    -------
    torch.Tensor
    """
    offset = data.ndim - len(sigmas)
    for axis, sigma in enumerate(sigmas):
        kernel = gaussian_kernel1d(sigma, maximum_error, maximum_kernel_width, dtype=data.dtype)
        data = separable_convolve(data, kernel, offset + axis)
    return data


def box_mean(data: torch.Tensor, radius: int) -> torch.Tensor:
    """Local mean over a (2 * radius + 1) wide hypercube of all axes of `data`."""
    assert_positive_integer(radius)
    kernel = torch.full((2 * radius + 1,), 1.0 / (2 * radius + 1), dtype=data.dtype)
    for axis in range(data.ndim):
        data = separable_convolve(data, kernel, axis)
    return data


def binary_dilate(mask: torch.Tensor, radius: int = 1) -> torch.Tensor:
    """Dilate a binary mask with a (2 * radius + 1) wide box structuring element.

    Parameters
    ----------
    mask : torch.Tensor
        Boolean or numeric mask of shape (\\*D) with two or three spatial dimensions. Non-zero values are foreground.
    radius : int
        Radius of the structuring element. Default: 1.

    Returns
    -------
    torch.Tensor
        Boolean mask of shape (\\*D).
    """
    assert_spatial_dimensions(mask.ndim)
    assert_positive_integer(radius)
    pool = F.max_pool2d if mask.ndim == 2 else F.max_pool3d
    dilated = pool((mask != 0).double()[None, None], kernel_size=2 * radius + 1, stride=1, padding=radius)
    return dilated[0, 0] > 0
