# Copyright (c) VaReg Contributors

"""Registration module of VaReg.

This module contains the variational registration algorithm: force functions computing a per-voxel update from the
image similarity, regularizers smoothing the fields, the single resolution registration filter, the multi-resolution
controller and the stop criterion deciding when a level has converged.
"""
