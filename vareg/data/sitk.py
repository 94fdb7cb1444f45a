# Copyright (c) VaReg Contributors

"""SimpleITK utility functions for transformations between SimpleITK images and VaReg images and fields.

SimpleITK orders spacing, origin and vector components as (x, y, z) while the tensors are ordered as (z, y, x). The
conversions reverse the per-axis quantities, and displacement vectors are rotated between the physical frame of
SimpleITK and the array-axis frame of :class:`VectorField`.
"""

from __future__ import annotations

import logging

import numpy as np
import SimpleITK as sitk
import torch
from einops import rearrange

from vareg.data.image import Grid, Image, VectorField
from vareg.types import PathOrString

__all__ = [
    "convert_to_sitk_image",
    "convert_to_sitk_vector_image",
    "convert_to_image",
    "convert_to_vector_field",
    "match_histograms",
    "read_image",
    "read_vector_field",
    "write_image",
    "write_vector_field",
]

logger = logging.getLogger(__name__)


def _grid_from_sitk(image: sitk.Image) -> Grid:
    ndim = image.GetDimension()
    # SimpleITK direction is row-major with column b the direction of index axis b in (x, y, z) order.
    direction = np.asarray(image.GetDirection(), dtype=np.float64).reshape(ndim, ndim)
    direction = direction[::-1, ::-1]
    return Grid(
        size=tuple(image.GetSize())[::-1],
        spacing=tuple(image.GetSpacing())[::-1],
        origin=tuple(image.GetOrigin())[::-1],
        direction=tuple(tuple(row) for row in direction),
    )


def _apply_grid(image: sitk.Image, grid: Grid) -> sitk.Image:
    direction = np.asarray(grid.direction, dtype=np.float64)[::-1, ::-1]
    image.SetSpacing(tuple(grid.spacing)[::-1])
    image.SetOrigin(tuple(grid.origin)[::-1])
    image.SetDirection(tuple(direction.flatten().tolist()))
    return image


def convert_to_image(image: sitk.Image, dtype: torch.dtype = torch.float32) -> Image:
    """Converts a scalar SimpleITK image to an :class:`Image`.

    Parameters
    ----------
    image : sitk.Image
        SimpleITK image.
    dtype : torch.dtype
        Data type of the tensor. Default: torch.float32.

    Returns
    -------
    Image
    """
    if image.GetNumberOfComponentsPerPixel() != 1:
        raise ValueError(f"Expected a scalar image, got {image.GetNumberOfComponentsPerPixel()} components.")
    array = sitk.GetArrayFromImage(image)
    return Image(torch.tensor(array.astype(np.float64), dtype=dtype), _grid_from_sitk(image))


def convert_to_sitk_image(image: Image) -> sitk.Image:
    """Converts an :class:`Image` to a float SimpleITK image."""
    sitk_image = sitk.GetImageFromArray(image.data.detach().cpu().numpy().astype(np.float32))
    return _apply_grid(sitk_image, image.grid)


def convert_to_vector_field(image: sitk.Image, dtype: torch.dtype = torch.float32) -> VectorField:
    """Converts a SimpleITK vector image holding physical displacements to a :class:`VectorField`.

    Parameters
    ----------
    image : sitk.Image
        Vector image with as many components as dimensions.
    dtype : torch.dtype
        Data type of the tensor. Default: torch.float32.

    Returns
    -------
    VectorField
    """
    ndim = image.GetDimension()
    if image.GetNumberOfComponentsPerPixel() != ndim:
        raise ValueError(
            f"Expected a vector image with {ndim} components, got {image.GetNumberOfComponentsPerPixel()}."
        )
    grid = _grid_from_sitk(image)
    array = sitk.GetArrayFromImage(image).astype(np.float64)
    # (*D, N) in (x, y, z) component order to (N, *D) in array-axis order.
    data = rearrange(torch.tensor(array, dtype=dtype), "... c -> c ...").flip(0)
    if not grid.is_axis_aligned:
        data = torch.einsum("ba,b...->a...", grid.direction_tensor(dtype), data)
    return VectorField(data.contiguous(), grid)


def convert_to_sitk_vector_image(field: VectorField) -> sitk.Image:
    """Converts a :class:`VectorField` to a SimpleITK vector image of physical displacements."""
    data = field.data.detach().cpu().to(torch.float64)
    if not field.grid.is_axis_aligned:
        data = torch.einsum("ab,b...->a...", field.grid.direction_tensor(data.dtype), data)
    array = np.ascontiguousarray(rearrange(data.flip(0), "c ... -> ... c").numpy())
    sitk_image = sitk.GetImageFromArray(array, isVector=True)
    return _apply_grid(sitk_image, field.grid)


def read_image(filename: PathOrString, dtype: torch.dtype = torch.float32) -> Image:
    logger.info("Reading image %s.", filename)
    return convert_to_image(sitk.ReadImage(str(filename), sitk.sitkFloat32), dtype)


def write_image(image: Image, filename: PathOrString) -> None:
    logger.info("Writing image %s.", filename)
    sitk.WriteImage(convert_to_sitk_image(image), str(filename))


def read_vector_field(filename: PathOrString, dtype: torch.dtype = torch.float32) -> VectorField:
    logger.info("Reading vector field %s.", filename)
    return convert_to_vector_field(sitk.ReadImage(str(filename), sitk.sitkVectorFloat64), dtype)


def write_vector_field(field: VectorField, filename: PathOrString) -> None:
    logger.info("Writing vector field %s.", filename)
    sitk.WriteImage(convert_to_sitk_vector_image(field), str(filename))


def match_histograms(
    moving_image: Image,
    fixed_image: Image,
    histogram_levels: int = 1024,
    match_points: int = 7,
) -> Image:
    """Matches the intensity histogram of `moving_image` to the one of `fixed_image`.

    Voxels below the mean intensity are excluded from the histograms.

    Parameters
    ----------
    moving_image : Image
        Image whose intensities are transformed.
    fixed_image : Image
        Reference image.
    histogram_levels : int
        Number of histogram bins. Default: 1024.
    match_points : int
        Number of quantiles matched. Default: 7.

    Returns
    -------
    Image
        Intensity transformed moving image on its own grid.
    """
    matcher = sitk.HistogramMatchingImageFilter()
    matcher.SetNumberOfHistogramLevels(histogram_levels)
    matcher.SetNumberOfMatchPoints(match_points)
    matcher.ThresholdAtMeanIntensityOn()
    matched = matcher.Execute(convert_to_sitk_image(moving_image), convert_to_sitk_image(fixed_image))
    return Image(
        torch.tensor(sitk.GetArrayFromImage(matched).astype(np.float64), dtype=moving_image.data.dtype),
        moving_image.grid,
    )

