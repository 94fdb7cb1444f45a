# Copyright (c) VaReg Contributors

"""vareg.functionals.grad module.

This module contains the central difference image gradient used by the force functions."""

from __future__ import annotations

from typing import Sequence

import torch

__all__ = ["spatial_gradient"]


def spatial_gradient(image: torch.Tensor, spacing: Sequence[float]) -> torch.Tensor:
    """Compute the gradient of an N-dimensional image by central differences in physical units.

    At the boundary the image is extended by replication, which turns the central difference into a half-weighted
    one-sided difference.

    Parameters
    ----------
    image : torch.Tensor
        Image of shape (\\*D) with N spatial dimensions.
    spacing : sequence of float
        Sample spacing per array axis.

    Returns
    -------
    torch.Tensor
        Gradient of shape (N, \\*D), component `k` is the derivative along array axis `k`.
    """
    ndim = image.ndim
    if len(spacing) != ndim:
        raise ValueError(f"Expected {ndim} spacing values, got {len(spacing)}.")

    gradients = []
    for axis in range(ndim):
        length = image.shape[axis]
        padded = torch.cat([image.narrow(axis, 0, 1), image, image.narrow(axis, length - 1, 1)], dim=axis)
        forward = padded.narrow(axis, 2, length)
        backward = padded.narrow(axis, 0, length)
        gradients.append((forward - backward) / (2.0 * spacing[axis]))
    return torch.stack(gradients, dim=0)
