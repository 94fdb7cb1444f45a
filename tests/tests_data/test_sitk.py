# Copyright (c) VaReg Contributors

"""Tests for the vareg.data.sitk module."""

import numpy as np
import SimpleITK as sitk
import torch

from vareg.data.image import Grid, Image, VectorField
from vareg.data.sitk import (
    convert_to_image,
    convert_to_sitk_image,
    convert_to_sitk_vector_image,
    convert_to_vector_field,
    match_histograms,
    read_image,
    read_vector_field,
    write_image,
    write_vector_field,
)


def create_sitk_image(shape=(4, 5, 6)):
    image = sitk.GetImageFromArray(np.random.rand(*shape).astype(np.float32))
    image.SetSpacing((1.0, 2.0, 3.0))
    image.SetOrigin((-1.0, 0.0, 5.0))
    return image


def test_convert_to_image_reverses_axes():
    sitk_image = create_sitk_image()
    image = convert_to_image(sitk_image)

    assert image.grid.size == (4, 5, 6)
    assert image.grid.spacing == (3.0, 2.0, 1.0)
    assert image.grid.origin == (5.0, 0.0, -1.0)
    assert np.allclose(image.data.numpy(), sitk.GetArrayFromImage(sitk_image))

    back = convert_to_sitk_image(image)
    assert back.GetSpacing() == sitk_image.GetSpacing()
    assert back.GetOrigin() == sitk_image.GetOrigin()


def test_convert_vector_field_component_order():
    grid = Grid(size=(4, 5, 6), spacing=(3.0, 2.0, 1.0), origin=(0.0, 0.0, 0.0))
    data = torch.zeros((3,) + grid.size, dtype=torch.float64)
    data[0] = 1.0  # displacement along array axis 0, i.e. along z
    sitk_field = convert_to_sitk_vector_image(VectorField(data, grid))

    array = sitk.GetArrayFromImage(sitk_field)
    assert array.shape == (4, 5, 6, 3)
    assert np.allclose(array[..., 2], 1.0)
    assert np.allclose(array[..., :2], 0.0)

    field = convert_to_vector_field(sitk_field, dtype=torch.float64)
    assert field.grid.same_domain(grid)
    assert torch.allclose(field.data, data)


def test_convert_vector_field_with_direction():
    grid = Grid(size=(4, 5), spacing=(1.0, 1.0), origin=(0.0, 0.0), direction=((0.0, -1.0), (1.0, 0.0)))
    data = torch.zeros((2,) + grid.size, dtype=torch.float64)
    data[0] = 1.0
    sitk_field = convert_to_sitk_vector_image(VectorField(data, grid))
    # Array axis 0 points along the second physical coordinate of the grid, which is x for SimpleITK.
    array = sitk.GetArrayFromImage(sitk_field)
    assert np.allclose(array[..., 0], 1.0)
    assert np.allclose(array[..., 1], 0.0)
    assert torch.allclose(convert_to_vector_field(sitk_field, dtype=torch.float64).data, data)


def test_read_write(tmp_path):
    image = convert_to_image(create_sitk_image())
    write_image(image, tmp_path / "image.mha")
    read = read_image(tmp_path / "image.mha")
    assert read.grid.same_domain(image.grid)
    assert torch.allclose(read.data, image.data)

    field = VectorField(torch.rand((3,) + image.grid.size, dtype=torch.float64), image.grid)
    write_vector_field(field, tmp_path / "field.mha")
    read_field = read_vector_field(tmp_path / "field.mha", dtype=torch.float64)
    assert read_field.grid.same_domain(field.grid)
    assert torch.allclose(read_field.data, field.data)


def test_match_histograms():
    fixed = Image.from_tensor(torch.rand(16, 16))
    moving = Image.from_tensor(3.0 * fixed.data + 2.0)
    matched = match_histograms(moving, fixed, histogram_levels=64, match_points=5)
    assert matched.grid == moving.grid
    assert (matched.data.mean() - fixed.data.mean()).abs() < (moving.data.mean() - fixed.data.mean()).abs()
