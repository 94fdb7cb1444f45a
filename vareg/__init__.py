# Copyright (c) VaReg Contributors
"""VaReg - Variational deformable image registration."""

__version__ = "0.1.0"
