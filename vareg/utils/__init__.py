# Copyright (c) VaReg Contributors
from typing import Any, List


def ensure_list(data: Any) -> List:
    """Ensure input is a list.

    Parameters
    ----------
    data: object

    Returns
    -------
    list
    """
    if data is None:
        return []

    if not isinstance(data, (list, tuple)):
        return [data]

    return list(data)


def chunks(list_to_chunk: List, number_of_chunks: int):
    """Yield `number_of_chunks number` of sequential chunks from `list_to_chunk`. Adapted from [1]_.

    Parameters
    ----------
    list_to_chunk: List
    number_of_chunks: int

    References
    ----------

    .. [1] https://stackoverflow.com/a/54802737
    """
    d, r = divmod(len(list_to_chunk), number_of_chunks)
    for idx in range(number_of_chunks):
        si = (d + 1) * (idx if idx < r else r) + d * (0 if idx < r else idx - r)
        yield list_to_chunk[si : si + (d + 1 if idx < r else d)]


def expand_per_axis(data: Any, ndim: int) -> List:
    """Broadcast a scalar or a length one sequence to one value per spatial axis.

    Parameters
    ----------
    data: float, int or sequence
    ndim: int
        Number of spatial axes.

    Returns
    -------
    list
    """
    values = ensure_list(data)
    if len(values) == 1:
        values = values * ndim
    if len(values) != ndim:
        raise ValueError(f"Expected a single value or {ndim} values, got {len(values)}.")
    return values
