# Copyright (c) VaReg Contributors

"""Tests for the vareg.registration.warp module."""

import pytest
import torch

from vareg.data.image import Grid, Image, VectorField
from vareg.registration.warp import (
    create_grid,
    exponential_iterations,
    exponentiate,
    resample_field,
    resample_image,
    warp_image,
    warp_tensor,
)


def create_ramp_image(size, spacing):
    grid = Grid(size=size, spacing=spacing, origin=(0.0,) * len(size))
    data = create_grid(size, torch.float64)[..., -1].clone()
    return Image(data, grid)


@pytest.mark.parametrize("size", [(5, 6), (3, 4, 5)])
def test_create_grid(size):
    grid = create_grid(size, torch.float64)
    assert grid.shape == size + (len(size),)
    assert grid[(1,) * len(size)].tolist() == [1.0] * len(size)
    assert grid[..., 0].max() == size[0] - 1


@pytest.mark.parametrize("size", [(6, 7), (4, 5, 6)])
def test_warp_zero_field(size):
    image = Image(torch.rand(size, dtype=torch.float64), Grid.from_shape(size))
    field = VectorField.zeros(image.grid, dtype=torch.float64)
    warped = warp_image(image, field)
    assert warped.grid == image.grid
    assert torch.equal(warped.data, image.data)
    assert warped.data is not image.data


@pytest.mark.parametrize("spacing", [(1.0, 1.0), (1.0, 2.0), (0.5, 3.0)])
def test_warp_half_voxel_shift(spacing):
    image = create_ramp_image((6, 8), spacing)
    field = VectorField.zeros(image.grid, dtype=torch.float64)
    field.data[1] = 0.5 * spacing[1]
    warped = warp_image(image, field)
    expected = image.data + 0.5
    assert torch.allclose(warped.data[:, :-1], expected[:, :-1])
    # Border extension beyond the last column.
    assert torch.allclose(warped.data[:, -1], image.data[:, -1])


def test_warp_tensor_shape_mismatch():
    with pytest.raises(ValueError):
        warp_tensor(torch.zeros(1, 4, 4), torch.zeros(2, 5, 4), (1.0, 1.0))


def test_warp_image_onto_other_grid():
    image = create_ramp_image((6, 8), (1.0, 1.0))
    target = Grid(size=(3, 4), spacing=(2.0, 2.0), origin=(0.0, 1.0))
    warped = warp_image(image, VectorField.zeros(target, dtype=torch.float64))
    assert warped.grid == target
    assert torch.allclose(warped.data[0], torch.tensor([1.0, 3.0, 5.0, 7.0], dtype=torch.float64))


def test_resample_image_identity():
    image = create_ramp_image((4, 5, 6), (1.0, 2.0, 3.0))
    resampled = resample_image(image, image.grid)
    assert torch.equal(resampled.data, image.data)


def test_resample_field_coinciding_points():
    coarse = Grid(size=(4, 2), spacing=(2.0, 1.0), origin=(0.0, 0.0))
    fine = Grid(size=(7, 2), spacing=(1.0, 1.0), origin=(0.0, 0.0))
    data = torch.zeros((2,) + coarse.size, dtype=torch.float64)
    data[0] = torch.tensor([0.0, 2.0, 4.0, 6.0], dtype=torch.float64)[:, None]
    resampled = resample_field(VectorField(data, coarse), fine)

    assert resampled.grid == fine
    expected = torch.arange(7, dtype=torch.float64)[:, None].expand(7, 2)
    assert torch.allclose(resampled.data[0], expected)
    assert torch.allclose(resampled.data[1], torch.zeros(7, 2, dtype=torch.float64))


def test_resample_field_dimension_mismatch():
    field = VectorField.zeros(Grid.from_shape((4, 4)), dtype=torch.float64)
    with pytest.raises(ValueError):
        resample_field(field, Grid.from_shape((4, 4, 4)))


@pytest.mark.parametrize(
    "displacement, max_iterations, expected",
    [
        (0.0, 20, 0),
        (1.0, 20, 2),
        (4.0, 20, 4),
        (4.0, 3, 3),
        (1e6, 20, 20),
    ],
)
def test_exponential_iterations(displacement, max_iterations, expected):
    field = VectorField.zeros(Grid.from_shape((5, 5)), dtype=torch.float64)
    field.data[0, 2, 2] = displacement
    assert exponential_iterations(field, max_iterations) == expected


def test_exponential_iterations_spacing():
    field = VectorField.zeros(Grid(size=(5, 5), spacing=(4.0, 4.0), origin=(0.0, 0.0)), dtype=torch.float64)
    field.data[0] = 4.0
    assert exponential_iterations(field) == 2


def test_exponentiate_zero_field():
    field = VectorField.zeros(Grid.from_shape((6, 6)), dtype=torch.float64)
    displacement = exponentiate(field)
    assert displacement.grid == field.grid
    assert torch.count_nonzero(displacement.data) == 0


@pytest.mark.parametrize("num_iterations", [None, 0, 3, 6])
def test_exponentiate_constant_field(num_iterations):
    field = VectorField.zeros(Grid.from_shape((8, 9)), dtype=torch.float64)
    field.data[0] = 0.7
    field.data[1] = -1.3
    copy = field.data.clone()
    displacement = exponentiate(field, num_iterations)
    # The flow of a constant velocity is a translation.
    assert torch.allclose(displacement.data, field.data)
    assert torch.equal(field.data, copy)


def test_exponentiate_inverse():
    grid = Grid.from_shape((32, 32))
    coordinates = create_grid(grid.size, torch.float64)
    bump = torch.exp(-((coordinates - 15.5) ** 2).sum(dim=-1) / 80.0)
    velocity = torch.stack([0.8 * bump, -0.5 * bump], dim=0)

    forward = exponentiate(VectorField(velocity, grid))
    backward = exponentiate(VectorField(-velocity, grid))
    # u_f(x) + u_b(x + u_f(x)) is the displacement of exp(-v) o exp(v).
    composed = forward.data + warp_tensor(backward.data, forward.data, grid.spacing)
    assert composed.abs().max() < 0.05
