# src/automatic_eq_optimizer/errors.py

"""
Exceptions raised by the optimizer.

All of them derive from ValueError so callers that only guard against bad
input keep working. optimize() turns any OptimizationError into a failed
OptimizationResult; nothing else is caught there.
"""


class OptimizationError(ValueError):
    """Base class for every error the optimizer reports to its caller."""


class InvalidConfig(OptimizationError):
    """The configuration violates an invariant and was rejected as a whole."""


class InvalidCurve(InvalidConfig):
    """Frequency/magnitude data that cannot form a Curve."""


class EmptyInput(OptimizationError):
    """No captured curve was supplied."""


class OutOfRange(OptimizationError):
    """A curve was queried outside its frequency range with extrapolation disabled."""


class NumericFailure(OptimizationError):
    """A candidate produced a NaN or infinite loss."""
