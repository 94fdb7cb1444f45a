# Copyright (c) VaReg Contributors

import argparse
import pathlib

from vareg.cli.utils import is_file, positive_int
from vareg.register import register_from_argparse


def register_parser(parser: argparse._SubParsersAction):
    """Register registration commands to a root parser."""

    epilog = """
        Examples:
        ---------
        Register two images with the default configuration:
            $ vareg register <fixed_image> <moving_image> <output_field>

        Diffeomorphic registration with a configuration file and overrides:
            $ vareg register <fixed_image> <moving_image> <output_field> --cfg <cfg_filename>.yaml \
                            --set registration.search_space=DIFFEOMORPHIC multiresolution.number_of_levels=2 \
                            multiresolution.number_of_iterations=[100,50] --warped-image <warped_image>
        """
    register_subparser = parser.add_parser(
        "register",
        help="Run a variational registration of a moving image onto a fixed image.",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    register_subparser.add_argument("fixed_image", type=is_file, help="Path to the fixed (reference) image.")
    register_subparser.add_argument("moving_image", type=is_file, help="Path to the moving image.")
    register_subparser.add_argument("output_field", type=pathlib.Path, help="Path of the output displacement field.")
    register_subparser.add_argument(
        "--cfg",
        dest="cfg_file",
        help="Config file for the registration. Values not given fall back to the defaults.",
        required=False,
        type=is_file,
    )
    register_subparser.add_argument(
        "--set",
        dest="overrides",
        nargs="+",
        default=[],
        help="Configuration overrides of the form `key.subkey=value`, applied after the config file.",
    )
    register_subparser.add_argument("--mask", type=is_file, help="Mask on the fixed image grid.")
    register_subparser.add_argument(
        "--initial-field",
        dest="initial_field",
        type=is_file,
        help="Initial displacement field, or velocity field for diffeomorphic registration.",
    )
    register_subparser.add_argument(
        "--velocity-field",
        dest="velocity_field",
        type=pathlib.Path,
        help="Path of the output velocity field. Only written for diffeomorphic registration.",
    )
    register_subparser.add_argument(
        "--warped-image", dest="warped_image", type=pathlib.Path, help="Path of the warped moving image."
    )
    register_subparser.add_argument(
        "--num-threads", dest="num_threads", type=positive_int, help="Number of workers of the force computation."
    )
    register_subparser.add_argument("--log-file", dest="log_file", type=pathlib.Path, help="Write the log to a file.")
    register_subparser.add_argument("--debug", action="store_true", help="Set logging level to debug.")

    register_subparser.set_defaults(subcommand=register_from_argparse)
