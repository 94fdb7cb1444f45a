# Copyright (c) VaReg Contributors

from __future__ import annotations

import pathlib
from enum import Enum
from typing import Union

PathOrString = Union[pathlib.Path, str]


class VaregEnum(str, Enum):
    """Type of any enumerator with allowed comparison to string invariant to cases."""

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Enum):
            _other = str(other.value)
        else:
            _other = str(other)
        return bool(self.value.lower() == _other.lower())

    def __hash__(self) -> int:
        # re-enable hashtable so it can be used as a dict key or in a set
        return hash(self.value.lower())
