# Copyright (c) VaReg Contributors

import argparse
import logging

from vareg.data.sitk import read_image, read_vector_field, write_image, write_vector_field
from vareg.environment import setup_registration_environment
from vareg.registration.factory import register
from vareg.registration.logger import RegistrationLogger
from vareg.registration.warp import warp_image

logger = logging.getLogger(__name__)


def register_from_argparse(args: argparse.Namespace):
    overrides = list(args.overrides)
    if args.num_threads is not None:
        overrides.append(f"registration.num_threads={args.num_threads}")
    cfg = setup_registration_environment(args.cfg_file, overrides, debug=args.debug, log_file=args.log_file)

    fixed_image = read_image(args.fixed_image)
    moving_image = read_image(args.moving_image)
    mask_image = read_image(args.mask) if args.mask is not None else None
    initial_field = read_vector_field(args.initial_field) if args.initial_field is not None else None

    result = register(
        fixed_image,
        moving_image,
        cfg,
        mask_image=mask_image,
        initial_field=initial_field,
        observers=[RegistrationLogger()],
    )
    logger.info("Final metric: %.6f, final rms change: %.6f.", result.metric, result.rms_change)

    write_vector_field(result.displacement_field, args.output_field)
    if args.velocity_field is not None:
        if result.velocity_field is None:
            logger.warning("No velocity field for search space %s. Skipping output.", cfg.registration.search_space)
        else:
            write_vector_field(result.velocity_field, args.velocity_field)
    if args.warped_image is not None:
        write_image(warp_image(moving_image, result.displacement_field), args.warped_image)
