# Copyright (c) VaReg Contributors

"""Tests for the vareg.registration.factory module."""

import pytest
import torch
from omegaconf import OmegaConf

from vareg.config.defaults import DefaultConfig, ForceConfig, RegularizerConfig
from vareg.data.image import Grid, Image
from vareg.registration.events import RegistrationEventType
from vareg.registration.factory import (
    build_force_function,
    build_multiresolution_registration,
    build_registration_filter,
    build_regularizer,
    register,
)
from vareg.registration.forces import DemonsForce, ForceType, GradientType, NCCForce, SSDForce
from vareg.registration.registration import SearchSpace
from vareg.registration.regularizers import (
    DiffusionRegularizer,
    ElasticRegularizer,
    GaussianRegularizer,
    RegularizerType,
)
from vareg.registration.stop_criterion import StopCriterion
from vareg.registration.warp import create_grid


def create_blob(size, center, sigma=4.0, amplitude=100.0):
    coordinates = create_grid(size, torch.float64)
    center = torch.tensor(center, dtype=torch.float64)
    data = amplitude * torch.exp(-((coordinates - center) ** 2).sum(dim=-1) / (2 * sigma**2))
    return Image(data, Grid.from_shape(size))


def create_config(*overrides):
    return OmegaConf.merge(OmegaConf.structured(DefaultConfig), OmegaConf.from_dotlist(list(overrides)))


@pytest.mark.parametrize(
    "force_type, expected",
    [(ForceType.DEMONS, DemonsForce), (ForceType.SSD, SSDForce), (ForceType.NCC, NCCForce)],
)
def test_build_force_function(force_type, expected):
    cfg = OmegaConf.structured(ForceConfig(force_type=force_type, gradient_type=GradientType.SYMMETRIC, ncc_radius=3))
    force_function = build_force_function(cfg, time_step=0.25)
    assert isinstance(force_function, expected)
    assert force_function.gradient_type == GradientType.SYMMETRIC
    assert force_function.compute_global_time_step() == 0.25
    if force_type == ForceType.NCC:
        assert force_function.radius == 3


@pytest.mark.parametrize(
    "regularizer_type, expected",
    [
        (RegularizerType.GAUSSIAN, GaussianRegularizer),
        (RegularizerType.DIFFUSION, DiffusionRegularizer),
        (RegularizerType.ELASTIC, ElasticRegularizer),
    ],
)
def test_build_regularizer(regularizer_type, expected):
    cfg = OmegaConf.structured(RegularizerConfig(regularizer_type=regularizer_type))
    regularizer = build_regularizer(cfg, time_step=0.5)
    assert isinstance(regularizer, expected)
    assert regularizer.time_step == 0.5
    assert regularizer.use_image_spacing


def test_build_registration_filter():
    cfg = create_config("registration.search_space=DIFFEOMORPHIC", "registration.num_threads=3")
    registration_filter = build_registration_filter(cfg)
    assert registration_filter.search_space == SearchSpace.DIFFEOMORPHIC
    assert registration_filter.is_diffeomorphic
    assert registration_filter.num_threads == 3
    assert isinstance(registration_filter.force_function, DemonsForce)
    assert isinstance(registration_filter.regularizer, DiffusionRegularizer)


@pytest.mark.parametrize("enabled", [True, False])
def test_build_multiresolution_registration(enabled):
    cfg = create_config(
        "multiresolution.number_of_levels=2",
        "multiresolution.number_of_iterations=[5,3]",
        f"stop_criterion.enabled={enabled}",
    )
    controller, stop_criterion = build_multiresolution_registration(cfg)
    assert controller.number_of_levels == 2
    assert controller.number_of_iterations == [5, 3]
    assert controller.schedule is None
    if enabled:
        assert isinstance(stop_criterion, StopCriterion)
        assert stop_criterion.multi_resolution is controller
        assert stop_criterion.registration_filter is controller.registration_filter
    else:
        assert stop_criterion is None


@pytest.mark.parametrize("search_space", ["STANDARD", "DIFFEOMORPHIC", "SYMMETRIC_DIFFEOMORPHIC"])
def test_register(search_space):
    fixed = create_blob((32, 32), (16.0, 16.0))
    moving = create_blob((32, 32), (16.0, 17.5))
    cfg = create_config(
        f"registration.search_space={search_space}",
        "multiresolution.number_of_levels=2",
        "multiresolution.number_of_iterations=[5,5]",
    )
    events = []
    result = register(fixed, moving, cfg, observers=[lambda event_type, record=None: events.append(event_type)])

    assert result.displacement_field.grid == fixed.grid
    assert len(result.history) == 10
    assert [record.level for record in result.history] == [0] * 5 + [1] * 5
    assert result.metric == result.history[-1].metric
    assert result.displacement_field.data[1, 16, 16] > 0
    assert events[0] == RegistrationEventType.INITIALIZE
    assert events.count(RegistrationEventType.LEVEL) == 2
    if search_space == "STANDARD":
        assert result.velocity_field is None
    else:
        assert result.velocity_field.grid == fixed.grid


def test_register_with_histogram_matching():
    fixed = create_blob((24, 24), (12.0, 12.0))
    moving = Image(2.0 * create_blob((24, 24), (12.0, 13.0)).data + 10.0, fixed.grid)
    cfg = create_config(
        "preprocessing.histogram_matching=true",
        "preprocessing.histogram_levels=128",
        "multiresolution.number_of_levels=1",
        "multiresolution.number_of_iterations=[3]",
    )
    result = register(fixed, moving, cfg)
    assert len(result.history) == 3
    assert result.displacement_field.grid == fixed.grid
