# Copyright (c) VaReg Contributors
import argparse
import pathlib


def is_file(path):
    path = pathlib.Path(path)
    if path.is_file():
        return path
    raise argparse.ArgumentTypeError(f"{path} is not a valid file.")


def positive_int(value):
    value = int(value)
    if value <= 0:
        raise argparse.ArgumentTypeError(f"Expected a positive integer, got {value}.")
    return value
