# Copyright (c) VaReg Contributors

"""Tests for the vareg.registration.regularizers module."""

import pytest
import torch

from vareg.data.image import Grid, VectorField
from vareg.functionals.smooth import gaussian_smooth
from vareg.registration.regularizers import (
    DiffusionRegularizer,
    ElasticRegularizer,
    GaussianRegularizer,
    solve_neumann_tridiagonal,
)


def create_random_field(size, spacing=None):
    spacing = spacing if spacing is not None else (1.0,) * len(size)
    grid = Grid(size=size, spacing=spacing, origin=(0.0,) * len(size))
    torch.manual_seed(0)
    return VectorField(torch.rand((len(size),) + tuple(size), dtype=torch.float64), grid)


def neumann_matrix(length, coefficient):
    matrix = torch.eye(length, dtype=torch.float64) * (1.0 + 2.0 * coefficient)
    matrix[0, 0] = matrix[-1, -1] = 1.0 + coefficient
    for index in range(length - 1):
        matrix[index, index + 1] = matrix[index + 1, index] = -coefficient
    return matrix


REGULARIZERS = [
    GaussianRegularizer(standard_deviations=1.5),
    DiffusionRegularizer(alpha=0.7),
    ElasticRegularizer(mu=0.5, lambda_=0.5),
]


@pytest.mark.parametrize("regularizer", REGULARIZERS)
@pytest.mark.parametrize("size", [(8, 9), (5, 6, 7)])
def test_constant_field_preserved(regularizer, size):
    grid = Grid.from_shape(size)
    data = torch.ones((len(size),) + size, dtype=torch.float64)
    data[0] = 2.5
    regularized = regularizer.regularize(VectorField(data, grid))
    assert regularized.grid == grid
    assert torch.allclose(regularized.data, data)


@pytest.mark.parametrize("regularizer", REGULARIZERS)
def test_random_field_smoothed(regularizer):
    field = create_random_field((12, 14))
    copy = field.data.clone()
    regularized = regularizer.regularize(field)
    assert regularized.data.shape == field.data.shape
    assert regularized.data.std() < field.data.std()
    assert torch.equal(field.data, copy)


@pytest.mark.parametrize("coefficient", [0.1, 1.0, 4.0])
def test_solve_neumann_tridiagonal(coefficient):
    torch.manual_seed(0)
    rhs = torch.rand(3, 10, dtype=torch.float64)
    solution = solve_neumann_tridiagonal(rhs, coefficient, axis=1)
    expected = torch.linalg.solve(neumann_matrix(10, coefficient), rhs.T).T
    assert torch.allclose(solution, expected)


def test_solve_neumann_tridiagonal_trivial():
    rhs = torch.rand(4, 1, dtype=torch.float64)
    assert torch.equal(solve_neumann_tridiagonal(rhs, 1.0, axis=1), rhs)
    assert torch.equal(solve_neumann_tridiagonal(rhs, 0.0, axis=0), rhs)


@pytest.mark.parametrize("spacing", [(1.0, 1.0), (1.0, 2.0)])
def test_diffusion_matches_dense_solve(spacing):
    field = create_random_field((1, 10), spacing)
    regularizer = DiffusionRegularizer(alpha=0.5, time_step=0.8)
    regularized = regularizer.regularize(field)

    coefficient = 0.8 * 0.5 / spacing[1] ** 2
    expected = torch.linalg.solve(neumann_matrix(10, coefficient), field.data[:, 0, :].T).T
    assert torch.allclose(regularized.data[:, 0, :], expected)


def test_diffusion_without_image_spacing():
    field = create_random_field((1, 10), (1.0, 3.0))
    regularized = DiffusionRegularizer(alpha=0.5, use_image_spacing=False).regularize(field)
    expected = torch.linalg.solve(neumann_matrix(10, 0.5), field.data[:, 0, :].T).T
    assert torch.allclose(regularized.data[:, 0, :], expected)


def test_elastic_without_dilation_matches_diffusion():
    field = create_random_field((1, 10), (1.0, 1.5))
    elastic = ElasticRegularizer(mu=0.3, lambda_=-0.3).regularize(field)
    diffusion = DiffusionRegularizer(alpha=0.3).regularize(field)
    assert torch.allclose(elastic.data, diffusion.data)


@pytest.mark.parametrize(
    "regularizer",
    [DiffusionRegularizer(alpha=0.0), ElasticRegularizer(mu=0.0, lambda_=0.0), GaussianRegularizer(0.0)],
)
def test_identity_parameters(regularizer):
    field = create_random_field((6, 7, 5))
    assert torch.allclose(regularizer.regularize(field).data, field.data)


def test_gaussian_per_axis_physical_sigma():
    field = create_random_field((10, 12), (1.0, 2.0))
    regularized = GaussianRegularizer(standard_deviations=[0.0, 2.0]).regularize(field)
    assert torch.allclose(regularized.data, gaussian_smooth(field.data, [0.0, 1.0]))


@pytest.mark.parametrize(
    "regularizer_class, kwargs",
    [
        (DiffusionRegularizer, {"alpha": -1.0}),
        (ElasticRegularizer, {"mu": -1.0, "lambda_": 0.5}),
        (ElasticRegularizer, {"mu": 0.5, "lambda_": -1.0}),
    ],
)
def test_invalid_parameters(regularizer_class, kwargs):
    with pytest.raises(ValueError):
        regularizer_class(**kwargs)
