"""Error taxonomy shared by the sharing algebra and the triple generators."""


class MPCError(Exception):
    """Base class for every error raised by this toolkit."""


class InvalidThreshold(MPCError, ValueError):
    """Threshold t is zero or larger than the party count."""


class InsufficientShares(MPCError):
    """Fewer shares than the scheme's threshold were supplied."""


class DuplicateShareIndex(MPCError):
    """Two shares handed to reconstruction carry the same index."""


class IndexMismatch(MPCError):
    """Pointwise share operation on shares owned by different parties."""


class ZeroInverse(MPCError, ZeroDivisionError):
    """Multiplicative inverse of the additive identity."""


class TripleAlreadyConsumed(MPCError):
    """A Beaver triple was used a second time."""


class PartyUnavailable(MPCError):
    """A required peer did not answer within the round timeout."""

    def __init__(self, message: str, missing: tuple = ()) -> None:
        super().__init__(message)
        self.missing = tuple(missing)


class ProtocolTimeout(PartyUnavailable):
    """A round deadline expired before all expected messages arrived."""


class AbortedDecryption(MPCError):
    """Fewer than the decryption threshold of partial decryptions arrived."""


class NoiseBudgetExceeded(MPCError):
    """Homomorphic parameters cannot carry the required multiplication."""


class SerializationError(MPCError, ValueError):
    """Malformed transport encoding."""


class GenerationCancelled(MPCError):
    """An in-flight distributed generation was cancelled by its owner."""


class ProtocolStateError(MPCError, RuntimeError):
    """A protocol state machine was driven out of order."""
