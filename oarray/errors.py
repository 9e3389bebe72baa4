"""Exception hierarchy shared by the field, the constructors and the verifier."""


class OAError(Exception):
    """Base class for all errors raised by oarray."""


class InvalidFieldOrderError(OAError, ValueError):
    """The requested field GF(p^m) does not exist (p not prime or m < 1)."""


class DivisionByZeroError(OAError, ZeroDivisionError):
    """Inverse of the additive identity was requested."""


class FieldMismatchError(OAError, TypeError):
    """An element of one finite field was passed to another field."""


class ConstructionError(OAError, ValueError):
    """Base class for failures of orthogonal array constructors."""


class InfeasibleParametersError(ConstructionError):
    """The requested parameters lie outside the bounds of a construction."""


class PartitionMismatchError(ConstructionError):
    """Column groups do not cover every column exactly once."""


class VerificationError(OAError, ValueError):
    """The verifier received malformed input."""


class OrthogonalityViolatedError(VerificationError):
    """A level combination appears a different number of times than declared.

    Attributes:
        columns: the column subset whose projection is unbalanced.
        combination: the offending level combination (one level per column).
        expected: the declared number of occurrences.
        observed: the number of occurrences actually counted.
    """

    def __init__(
        self,
        columns: tuple[int, ...],
        combination: tuple[int, ...],
        expected: int | float,
        observed: int,
    ):
        self.columns = tuple(columns)
        self.combination = tuple(combination)
        self.expected = expected
        self.observed = observed
        super().__init__(
            f"columns {self.columns}: combination {self.combination} appears "
            f"{observed} times, expected {expected}"
        )


class StrongPropertyViolatedError(OrthogonalityViolatedError, ConstructionError):
    """A projection required by a strong orthogonal array is unbalanced."""
