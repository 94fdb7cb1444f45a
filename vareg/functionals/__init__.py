# Copyright (c) VaReg Contributors

"""Finite-difference and filtering functionals operating on plain tensors."""

from vareg.functionals.grad import spatial_gradient
from vareg.functionals.smooth import (
    binary_dilate,
    box_mean,
    gaussian_kernel1d,
    gaussian_smooth,
    separable_convolve,
)

__all__ = ["binary_dilate", "box_mean", "gaussian_kernel1d", "gaussian_smooth", "separable_convolve", "spatial_gradient"]
