# Copyright (c) VaReg Contributors
import inspect


def assert_positive_integer(*variables, strict: bool = False) -> None:
    """Assert if given variables are positive integer.

    Parameters
    ----------
    variables: Any
    strict: bool
        If true, will not allow zero values.
    """
    if not strict:
        type_name = "positive integer"
    else:
        type_name = "positive integer larger than zero"

    for variable in variables:
        if not isinstance(variable, int) or (variable <= 0 and strict) or (variable < 0 and not strict):
            callers_local_vars = inspect.currentframe().f_back.f_locals.items()  # type: ignore
            variable_name = [var_name for var_name, var_val in callers_local_vars if var_val is variable][0]

            raise ValueError(f"{variable_name} has to be a {type_name}. " f"Got {variable} of type {type(variable)}.")


def assert_spatial_dimensions(ndim: int) -> None:
    """Check that the number of spatial dimensions is supported by the sampling backend.

    Parameters
    ----------
    ndim: int
    """
    if ndim not in (2, 3):
        raise ValueError(f"Only 2D and 3D images are supported. Got {ndim} spatial dimensions.")
