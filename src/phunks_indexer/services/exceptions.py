"""Service error hierarchy for chain access, decoding and bridging.

- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, timeouts, fee/nonce races)
- PermanentError: Non-retryable errors (verification, reverts, corrupted ABI)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - RPC or store timeouts
    - Connection resets
    - Transaction submission failures
    - Confirmation polling exhausted
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Content hash does not match recorded provenance
    - Transaction reverted on-chain
    - Event data that cannot be decoded with the known ABI
    """

    pass


# Chain access errors
class RpcTimeoutError(TransientError):
    """RPC call exceeded its timeout."""

    pass


class ChainConnectionError(TransientError):
    """Failed to reach the chain RPC endpoint."""

    pass


# Decoding errors
class FatalDecodeError(PermanentError):
    """A log matched a known event but its payload does not fit the ABI."""

    pass


class LogDecodeError(ServiceError):
    """A single log could not be decoded and is skipped."""

    pass


# Bridge errors
class InvalidContentError(PermanentError):
    """Ethscription payload is not a decodable data URI."""

    pass


class NonceReleaseError(PermanentError):
    """Attempt to release a nonce whose transaction was already broadcast."""

    pass


class GasEstimationError(TransientError):
    """Gas estimation failed."""

    pass


class TransactionSubmissionError(TransientError):
    """Transaction submission failed."""

    pass
