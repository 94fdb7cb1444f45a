# Copyright (c) VaReg Contributors
import math
from dataclasses import dataclass, field
from typing import List, Optional

from vareg.config import BaseConfig
from vareg.registration.forces import ForceType, GradientType
from vareg.registration.registration import SearchSpace
from vareg.registration.regularizers import RegularizerType
from vareg.registration.stop_criterion import StopCriterionPolicy


@dataclass
class ForceConfig(BaseConfig):
    force_type: ForceType = ForceType.DEMONS
    gradient_type: GradientType = GradientType.WARPED
    intensity_difference_threshold: float = 0.001
    denominator_threshold: float = 1e-9
    ncc_radius: int = 2
    mask_background_threshold: float = 0.0


@dataclass
class RegularizerConfig(BaseConfig):
    regularizer_type: RegularizerType = RegularizerType.DIFFUSION
    use_image_spacing: bool = True

    # Diffusion
    alpha: float = 0.5

    # Gaussian
    standard_deviations: List[float] = field(default_factory=lambda: [math.sqrt(0.5)])
    maximum_error: float = 0.01
    maximum_kernel_width: int = 32

    # Elastic
    lame_mu: float = 0.5
    lame_lambda: float = 0.5


@dataclass
class RegistrationFilterConfig(BaseConfig):
    time_step: float = 1.0
    search_space: SearchSpace = SearchSpace.STANDARD
    smooth_update_field: bool = False
    smooth_displacement_field: bool = True
    exponential_num_iterations: Optional[int] = None
    exponential_max_iterations: int = 20
    num_threads: Optional[int] = None


@dataclass
class MultiResolutionConfig(BaseConfig):
    number_of_levels: int = 3
    number_of_iterations: List[int] = field(default_factory=lambda: [400, 400, 400])
    schedule: Optional[List[List[int]]] = None
    final_exponential_num_iterations: Optional[int] = None


@dataclass
class StopCriterionConfig(BaseConfig):
    enabled: bool = True
    policy: StopCriterionPolicy = StopCriterionPolicy.SIMPLE_GRADUATED
    regression_line_slope_threshold: float = 0.005
    number_of_fitting_iterations: int = 20
    perform_line_fitting_max_distance_check: bool = False
    line_fitting_max_distance: float = 0.01
    perform_increase_count_check: bool = False
    increase_count_threshold: int = 10


@dataclass
class PreprocessingConfig(BaseConfig):
    histogram_matching: bool = False
    histogram_levels: int = 1024
    match_points: int = 7


@dataclass
class DefaultConfig(BaseConfig):
    force: ForceConfig = field(default_factory=ForceConfig)
    regularizer: RegularizerConfig = field(default_factory=RegularizerConfig)
    registration: RegistrationFilterConfig = field(default_factory=RegistrationFilterConfig)
    multiresolution: MultiResolutionConfig = field(default_factory=MultiResolutionConfig)
    stop_criterion: StopCriterionConfig = field(default_factory=StopCriterionConfig)
    preprocessing: PreprocessingConfig = field(default_factory=PreprocessingConfig)
