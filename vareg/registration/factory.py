# Copyright (c) VaReg Contributors

"""Construction of the registration components from a configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from omegaconf import DictConfig, OmegaConf

from vareg.config.defaults import DefaultConfig, ForceConfig, RegularizerConfig, StopCriterionConfig
from vareg.data.image import Image, VectorField
from vareg.data.sitk import match_histograms
from vareg.registration.events import IterationRecord, Observer, RegistrationEventType
from vareg.registration.forces import DemonsForce, ForceFunction, ForceType, NCCForce, SSDForce
from vareg.registration.multiresolution import MultiResolutionRegistration
from vareg.registration.registration import RegistrationFilter
from vareg.registration.regularizers import (
    DiffusionRegularizer,
    ElasticRegularizer,
    GaussianRegularizer,
    Regularizer,
    RegularizerType,
)
from vareg.registration.stop_criterion import StopCriterion

__all__ = [
    "RegistrationResult",
    "build_force_function",
    "build_multiresolution_registration",
    "build_registration_filter",
    "build_regularizer",
    "build_stop_criterion",
    "register",
]

logger = logging.getLogger(__name__)


def build_force_function(cfg: ForceConfig, time_step: float = 1.0) -> ForceFunction:
    """Creates the force function selected by `cfg.force_type`."""
    kwargs = dict(
        gradient_type=cfg.gradient_type,
        time_step=time_step,
        intensity_difference_threshold=cfg.intensity_difference_threshold,
        denominator_threshold=cfg.denominator_threshold,
        mask_background_threshold=cfg.mask_background_threshold,
    )
    if cfg.force_type == ForceType.NCC:
        return NCCForce(radius=cfg.ncc_radius, **kwargs)
    if cfg.force_type == ForceType.SSD:
        return SSDForce(**kwargs)
    return DemonsForce(**kwargs)


def build_regularizer(cfg: RegularizerConfig, time_step: float = 1.0) -> Regularizer:
    """Creates the regularizer selected by `cfg.regularizer_type`."""
    if cfg.regularizer_type == RegularizerType.GAUSSIAN:
        return GaussianRegularizer(
            standard_deviations=list(cfg.standard_deviations),
            maximum_error=cfg.maximum_error,
            maximum_kernel_width=cfg.maximum_kernel_width,
            use_image_spacing=cfg.use_image_spacing,
            time_step=time_step,
        )
    if cfg.regularizer_type == RegularizerType.ELASTIC:
        return ElasticRegularizer(
            mu=cfg.lame_mu, lambda_=cfg.lame_lambda, use_image_spacing=cfg.use_image_spacing, time_step=time_step
        )
    return DiffusionRegularizer(alpha=cfg.alpha, use_image_spacing=cfg.use_image_spacing, time_step=time_step)


def build_registration_filter(cfg: DictConfig) -> RegistrationFilter:
    """Creates a registration filter with its force function and regularizer."""
    registration_cfg = cfg.registration
    return RegistrationFilter(
        force_function=build_force_function(cfg.force, registration_cfg.time_step),
        regularizer=build_regularizer(cfg.regularizer, registration_cfg.time_step),
        search_space=registration_cfg.search_space,
        smooth_update_field=registration_cfg.smooth_update_field,
        smooth_displacement_field=registration_cfg.smooth_displacement_field,
        exponential_num_iterations=registration_cfg.exponential_num_iterations,
        exponential_max_iterations=registration_cfg.exponential_max_iterations,
        num_threads=registration_cfg.num_threads,
    )


def build_stop_criterion(
    cfg: StopCriterionConfig,
    registration_filter: RegistrationFilter,
    multi_resolution: Optional[MultiResolutionRegistration] = None,
) -> StopCriterion:
    return StopCriterion(
        registration_filter,
        multi_resolution,
        policy=cfg.policy,
        regression_line_slope_threshold=cfg.regression_line_slope_threshold,
        number_of_fitting_iterations=cfg.number_of_fitting_iterations,
        perform_line_fitting_max_distance_check=cfg.perform_line_fitting_max_distance_check,
        line_fitting_max_distance=cfg.line_fitting_max_distance,
        perform_increase_count_check=cfg.perform_increase_count_check,
        increase_count_threshold=cfg.increase_count_threshold,
    )


def build_multiresolution_registration(
    cfg: DictConfig,
) -> Tuple[MultiResolutionRegistration, Optional[StopCriterion]]:
    """Creates the multi-resolution controller and, if enabled, its attached stop criterion."""
    multiresolution_cfg = cfg.multiresolution
    schedule = multiresolution_cfg.schedule
    controller = MultiResolutionRegistration(
        build_registration_filter(cfg),
        number_of_levels=multiresolution_cfg.number_of_levels,
        number_of_iterations=list(multiresolution_cfg.number_of_iterations),
        schedule=[list(row) for row in schedule] if schedule is not None else None,
        final_exponential_num_iterations=multiresolution_cfg.final_exponential_num_iterations,
    )
    stop_criterion = None
    if cfg.stop_criterion.enabled:
        stop_criterion = build_stop_criterion(cfg.stop_criterion, controller.registration_filter, controller)
        controller.add_observer(stop_criterion)
    return controller, stop_criterion


@dataclass
class RegistrationResult:
    displacement_field: VectorField
    velocity_field: Optional[VectorField]
    metric: float
    rms_change: float
    history: List[IterationRecord] = field(default_factory=list)


def register(
    fixed_image: Image,
    moving_image: Image,
    cfg: Optional[DictConfig] = None,
    mask_image: Optional[Image] = None,
    initial_field: Optional[VectorField] = None,
    observers: Sequence[Observer] = (),
) -> RegistrationResult:
    """Registers `moving_image` to `fixed_image`.

    Parameters
    ----------
    fixed_image : Image
        Reference image. The resulting field lives on its grid.
    moving_image : Image
        Image to be aligned.
    cfg : DictConfig, optional
        Configuration structured as :class:`DefaultConfig`. Default: the default configuration.
    mask_image : Image, optional
        Mask on the fixed image grid restricting the force computation.
    initial_field : VectorField, optional
        Initial displacement field, or velocity field in the diffeomorphic search spaces.
    observers : sequence of callables
        Additional observers of the multi-resolution controller.

    Returns
    -------
    RegistrationResult
    """
    if cfg is None:
        cfg = OmegaConf.structured(DefaultConfig)

    if cfg.preprocessing.histogram_matching:
        logger.info("Matching the histogram of the moving image to the fixed image.")
        moving_image = match_histograms(
            moving_image,
            fixed_image,
            histogram_levels=cfg.preprocessing.histogram_levels,
            match_points=cfg.preprocessing.match_points,
        )

    controller, _ = build_multiresolution_registration(cfg)
    history: List[IterationRecord] = []

    def record_history(event_type: RegistrationEventType, record: Optional[IterationRecord] = None) -> None:
        if event_type == RegistrationEventType.ITERATION:
            history.append(record)

    controller.add_observer(record_history)
    for observer in observers:
        controller.add_observer(observer)

    controller.set_fixed_image(fixed_image)
    controller.set_moving_image(moving_image)
    controller.set_mask_image(mask_image)
    controller.set_initial_field(initial_field)
    displacement_field = controller.run()

    return RegistrationResult(
        displacement_field=displacement_field,
        velocity_field=controller.get_velocity_field(),
        metric=controller.metric,
        rms_change=controller.rms_change,
        history=history,
    )
