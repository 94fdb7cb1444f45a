# Copyright (c) VaReg Contributors
from abc import ABC
from dataclasses import dataclass


@dataclass
class BaseConfig(ABC):
    pass
