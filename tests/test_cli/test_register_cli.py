# Copyright (c) VaReg Contributors

import logging
import sys

import numpy as np
import pytest
import SimpleITK as sitk

from vareg.cli.cli import main


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def write_blob(filename, center):
    z, y = np.meshgrid(np.arange(20), np.arange(24), indexing="ij")
    data = 100.0 * np.exp(-((z - center[0]) ** 2 + (y - center[1]) ** 2) / 18.0)
    image = sitk.GetImageFromArray(data.astype(np.float32))
    image.SetSpacing((1.0, 1.5))
    sitk.WriteImage(image, str(filename))


@pytest.mark.parametrize("search_space", ["STANDARD", "DIFFEOMORPHIC"])
def test_register_command(tmp_path, monkeypatch, restore_logging, search_space):
    fixed, moving = tmp_path / "fixed.mha", tmp_path / "moving.mha"
    write_blob(fixed, (10.0, 12.0))
    write_blob(moving, (10.0, 13.0))
    output, velocity, warped = tmp_path / "field.mha", tmp_path / "velocity.mha", tmp_path / "warped.mha"

    monkeypatch.setattr(
        sys,
        "argv",
        [
            "vareg",
            "register",
            str(fixed),
            str(moving),
            str(output),
            "--velocity-field",
            str(velocity),
            "--warped-image",
            str(warped),
            "--num-threads",
            "2",
            "--log-file",
            str(tmp_path / "registration.log"),
            "--set",
            f"registration.search_space={search_space}",
            "multiresolution.number_of_levels=2",
            "multiresolution.number_of_iterations=[3,3]",
        ],
    )
    main()

    field = sitk.ReadImage(str(output))
    assert field.GetNumberOfComponentsPerPixel() == 2
    assert field.GetSize() == (24, 20)
    assert field.GetSpacing() == (1.0, 1.5)
    assert sitk.ReadImage(str(warped)).GetSize() == (24, 20)
    assert velocity.exists() == (search_space == "DIFFEOMORPHIC")
    assert "Finished level 1" in (tmp_path / "registration.log").read_text()


def test_missing_input(tmp_path, monkeypatch):
    monkeypatch.setattr(
        sys, "argv", ["vareg", "register", str(tmp_path / "a.mha"), str(tmp_path / "b.mha"), str(tmp_path / "c.mha")]
    )
    with pytest.raises(SystemExit):
        main()
