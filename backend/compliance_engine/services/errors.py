"""Exceptions raised by the compliance engine services.

Anything that prevents a consistent starting state propagates to the caller.
Problems local to one batch, edge or finding are recorded, not raised.
"""


class ComplianceEngineError(Exception):
    """Base class for engine errors."""


class NotFound(ComplianceEngineError):
    """Raised when a catalog source, control, package, group or system does not exist."""


class CatalogNotFound(NotFound):
    """Raised when the catalog source is missing or unreadable."""


class ControlNotFound(NotFound):
    """Raised when a control id is not present in the catalog."""


class PackageNotFound(NotFound):
    pass


class GroupNotFound(NotFound):
    pass


class SystemNotFound(NotFound):
    pass


class InvalidFinding(ComplianceEngineError, ValueError):
    """Raised for a malformed finding; the caller rejects only that finding."""


class InvalidSeverity(InvalidFinding):
    pass


class InvalidStatus(InvalidFinding):
    pass


class InvalidTransition(ComplianceEngineError, ValueError):
    """Raised for a compliance state change the state machine does not allow."""


class AggregationIncomplete(ComplianceEngineError):
    """Raised when an aggregation hits its deadline before reading all evidence."""
