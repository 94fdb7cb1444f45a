# Copyright (c) VaReg Contributors
import logging


class VaregException(Exception):
    def __init__(self, *args, **kwargs):
        super().__init__(*args)
        self.logger = logging.getLogger(__name__)


class ConfigurationError(VaregException):
    """The registration components are incompletely or inconsistently configured.

    Raised before any iteration runs, e.g. when the force function or regularizer is unset or when the number of
    iteration budgets does not match the number of resolution levels.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.logger.error("ConfigurationError: %s", message)
        self.message = message


class DomainMismatchError(VaregException):
    """Two grids that have to describe the same domain disagree in size, spacing, origin or direction."""

    def __init__(self, message: str, expected=None, received=None):
        super().__init__(message)
        self.logger.error("DomainMismatchError: %s (expected %s, received %s)", message, expected, received)
        self.message = message
        self.expected = expected
        self.received = received
