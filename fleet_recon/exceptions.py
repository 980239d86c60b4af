"""Exception types raised by the reconciliation engine."""


class FleetReconError(Exception):
    """Base class for engine errors."""


class ReconciliationScopeError(FleetReconError):
    """The batch of transactions to reconcile could not be read."""


class CardMappingError(FleetReconError):
    """A manual card-to-vehicle mapping was rejected."""
