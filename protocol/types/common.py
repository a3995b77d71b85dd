from enum import Enum

class OpType(str, Enum):
    START_CLOCK = "START_CLOCK"
    STAKE = "STAKE"
    UNSTAKE = "UNSTAKE"
    CLAIM = "CLAIM"                     # Settlement without a balance change

    # Funding pools (administrator only)
    DEPOSIT_FIXED = "DEPOSIT_FIXED"
    WITHDRAW_FIXED = "WITHDRAW_FIXED"

    # Dynamic reward stream (administrator only)
    DEPOSIT_DYNAMIC = "DEPOSIT_DYNAMIC"
    ALLOCATE_DYNAMIC = "ALLOCATE_DYNAMIC"

ADMIN_OPS = frozenset({
    OpType.START_CLOCK,
    OpType.DEPOSIT_FIXED,
    OpType.WITHDRAW_FIXED,
    OpType.DEPOSIT_DYNAMIC,
    OpType.ALLOCATE_DYNAMIC,
})

class ProtocolError(Exception):
    pass

class PolicyViolation(ProtocolError):
    """Caller asked for something outside the allowed preconditions."""

class Unauthorized(PolicyViolation):
    pass

class FundingShortfall(ProtocolError):
    """A reserve cannot honour a settlement or withdrawal. Operator error."""

class InputIntegrityError(ProtocolError):
    """Batch input is malformed (length mismatch, sum mismatch, replay)."""

class ArithmeticFault(ProtocolError):
    """Fixed-width overflow/underflow or an out-of-range input."""

class TransferFailed(ProtocolError):
    pass

class InvariantViolation(ProtocolError):
    pass

class AuthenticationError(ProtocolError):
    """Request signature, key or nonce does not check out."""
