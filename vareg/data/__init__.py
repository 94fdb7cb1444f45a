# Copyright (c) VaReg Contributors

"""Image, grid and vector field containers and their conversion from and to SimpleITK."""
