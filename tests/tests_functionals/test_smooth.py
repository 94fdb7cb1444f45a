# Copyright (c) VaReg Contributors

"""Tests for the vareg.functionals.smooth module."""

import pytest
import torch

from vareg.functionals.smooth import binary_dilate, box_mean, gaussian_kernel1d, gaussian_smooth, separable_convolve


@pytest.mark.parametrize("sigma", [0.5, 1.0, 2.5])
def test_gaussian_kernel1d_normalized_and_symmetric(sigma):
    kernel = gaussian_kernel1d(sigma)
    assert kernel.numel() % 2 == 1
    assert torch.allclose(kernel.sum(), torch.tensor(1.0, dtype=torch.float64))
    assert torch.allclose(kernel, kernel.flip(0))


@pytest.mark.parametrize("sigma", [0.0, -1.0])
def test_gaussian_kernel1d_identity(sigma):
    assert torch.equal(gaussian_kernel1d(sigma), torch.ones(1, dtype=torch.float64))


@pytest.mark.parametrize("maximum_kernel_width", [3, 9, 15])
def test_gaussian_kernel1d_maximum_width(maximum_kernel_width):
    kernel = gaussian_kernel1d(10.0, maximum_kernel_width=maximum_kernel_width)
    assert kernel.numel() <= maximum_kernel_width


def test_gaussian_kernel1d_width_grows_with_precision():
    assert gaussian_kernel1d(2.0, maximum_error=0.001).numel() > gaussian_kernel1d(2.0, maximum_error=0.1).numel()


@pytest.mark.parametrize("shape", [(2, 7, 8), (3, 5, 6, 7)])
def test_gaussian_smooth_preserves_constant(shape):
    data = torch.full(shape, 3.0, dtype=torch.float64)
    smoothed = gaussian_smooth(data, [1.5] * (len(shape) - 1))
    assert smoothed.shape == data.shape
    assert torch.allclose(smoothed, data)


def test_separable_convolve_along_single_axis():
    data = torch.zeros(5, 5, dtype=torch.float64)
    data[2, 2] = 1.0
    kernel = torch.tensor([0.25, 0.5, 0.25], dtype=torch.float64)
    output = separable_convolve(data, kernel, axis=1)
    assert torch.allclose(output[2, 1:4], kernel)
    assert output[1].abs().sum() == 0


def test_box_mean_impulse():
    data = torch.zeros(5, 5, dtype=torch.float64)
    data[2, 2] = 9.0
    output = box_mean(data, radius=1)
    assert torch.allclose(output[1:4, 1:4], torch.ones(3, 3, dtype=torch.float64))
    assert torch.allclose(output.sum(), torch.tensor(9.0, dtype=torch.float64))


@pytest.mark.parametrize("shape, expected", [[(7, 7), 9], [(7, 7, 7), 27]])
def test_binary_dilate_single_voxel(shape, expected):
    mask = torch.zeros(shape)
    mask[tuple(n // 2 for n in shape)] = 1
    dilated = binary_dilate(mask, radius=1)
    assert dilated.dtype == torch.bool
    assert int(dilated.sum()) == expected


def test_binary_dilate_border():
    mask = torch.zeros(5, 5)
    mask[0, 0] = 1
    assert int(binary_dilate(mask).sum()) == 4
