# Copyright (c) VaReg Contributors

import argparse

import pytest

from vareg.cli.utils import is_file, positive_int


def test_is_file(tmp_path):
    path = tmp_path / "image.mha"
    path.write_text("")
    assert is_file(str(path)) == path
    with pytest.raises(argparse.ArgumentTypeError):
        is_file(tmp_path / "missing.mha")
    with pytest.raises(argparse.ArgumentTypeError):
        is_file(tmp_path)


@pytest.mark.parametrize("value, expected", [("1", 1), ("16", 16)])
def test_positive_int(value, expected):
    assert positive_int(value) == expected


@pytest.mark.parametrize("value", ["0", "-3"])
def test_positive_int_invalid(value):
    with pytest.raises(argparse.ArgumentTypeError):
        positive_int(value)
