# Copyright (c) VaReg Contributors

import logging
import pathlib
from typing import Optional, Sequence, Union

from omegaconf import DictConfig, OmegaConf

from vareg.config.defaults import DefaultConfig
from vareg.exceptions import ConfigurationError
from vareg.registration.forces import ForceType
from vareg.utils.logging import setup

logger = logging.getLogger(__name__)


def validate_config(cfg: DictConfig) -> None:
    """Checks the consistency of a registration configuration.

    Parameters
    ----------
    cfg: DictConfig
        Configuration structured as :class:`DefaultConfig`.

    Raises
    ------
    ConfigurationError
        If the configuration is inconsistent.
    """
    multiresolution = cfg.multiresolution
    if multiresolution.number_of_levels < 1:
        raise ConfigurationError(f"The number of levels has to be positive. Got {multiresolution.number_of_levels}.")
    if len(multiresolution.number_of_iterations) != multiresolution.number_of_levels:
        raise ConfigurationError(
            f"Got {len(multiresolution.number_of_iterations)} iteration budgets "
            f"for {multiresolution.number_of_levels} levels."
        )
    if any(iterations < 0 for iterations in multiresolution.number_of_iterations):
        raise ConfigurationError(f"Iteration budgets have to be non-negative. Got {multiresolution.number_of_iterations}.")
    if multiresolution.schedule is not None and len(multiresolution.schedule) != multiresolution.number_of_levels:
        raise ConfigurationError(
            f"The schedule needs {multiresolution.number_of_levels} levels, got {len(multiresolution.schedule)}."
        )
    if cfg.registration.time_step <= 0:
        raise ConfigurationError(f"The time step has to be positive. Got {cfg.registration.time_step}.")
    if cfg.force.force_type == ForceType.NCC and cfg.force.ncc_radius < 1:
        raise ConfigurationError(f"The NCC radius has to be at least one. Got {cfg.force.ncc_radius}.")
    if cfg.stop_criterion.number_of_fitting_iterations < 2:
        raise ConfigurationError(
            "The regression window needs at least two iterations. "
            f"Got {cfg.stop_criterion.number_of_fitting_iterations}."
        )


def load_config(
    cfg_pathname: Optional[Union[pathlib.Path, str]] = None,
    overrides: Optional[Sequence[str]] = None,
) -> DictConfig:
    """Loads the default configuration, merged with a YAML file and dot-list overrides.

    Parameters
    ----------
    cfg_pathname: pathlib.Path or str, optional
        YAML file with (part of) the configuration.
    overrides: sequence of str, optional
        Overrides of the form `key.subkey=value`.

    Returns
    -------
    DictConfig
        Validated configuration.
    """
    # Load the default configs to ensure type safety
    cfg = OmegaConf.structured(DefaultConfig)
    if cfg_pathname is not None:
        cfg = OmegaConf.merge(cfg, OmegaConf.load(cfg_pathname))
    if overrides:
        cfg = OmegaConf.merge(cfg, OmegaConf.from_dotlist(list(overrides)))
    validate_config(cfg)
    return cfg  # type: ignore


def setup_registration_environment(
    cfg_pathname: Optional[Union[pathlib.Path, str]] = None,
    overrides: Optional[Sequence[str]] = None,
    debug: bool = False,
    log_file: Optional[pathlib.Path] = None,
) -> DictConfig:
    """Sets up logging and loads the configuration of a registration run."""
    setup(
        use_stdout=True,
        filename=log_file,
        log_level=("INFO" if not debug else "DEBUG"),
    )
    cfg = load_config(cfg_pathname, overrides)
    logger.info("Configuration: %s", OmegaConf.to_yaml(cfg))
    return cfg
