"""
Error types raised by the Markov model core.

Call-time domain errors (bad uniform draw, state index out of range,
wrong vector length) are plain ``ValueError``. The classes below mark the
two failure modes that callers may want to tell apart.
"""


class InvalidModel(ValueError):
    """Model parameters failed validation at construction time."""


class InfeasibleAdjustment(RuntimeError):
    """
    Relative risks cannot be applied to a probability distribution.

    Raised when all adjustable base probability mass is positive but the
    reweighted mass collapses to zero, so no rescaling can restore it.
    """
