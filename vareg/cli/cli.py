# Copyright (c) VaReg Contributors
"""VaReg Command-line interface.

This is the file which builds the main parser.
"""

import argparse
import sys


def main():
    """Console script for vareg."""
    # From https://stackoverflow.com/questions/17073688/how-to-use-argparse-subparsers-correctly
    root_parser = argparse.ArgumentParser(formatter_class=argparse.ArgumentDefaultsHelpFormatter)

    root_subparsers = root_parser.add_subparsers(help="VaReg CLI utils to run.")
    root_subparsers.required = True
    root_subparsers.dest = "subcommand"

    # Prevent circular imports
    from vareg.cli.register import register_parser as register_register_subcommand

    # Registration of a pair of images.
    register_register_subcommand(root_subparsers)

    args = root_parser.parse_args()
    args.subcommand(args)


if __name__ == "__main__":
    sys.exit(main())
