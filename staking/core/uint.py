"""
Checked fixed-width unsigned arithmetic.

Every counter update goes through these helpers: any result outside
[0, 2**bits) aborts the operation with ArithmeticFault.
"""
from protocol.types.common import ArithmeticFault

DEFAULT_BITS = 128


def _max(bits: int) -> int:
    return (1 << bits) - 1


def require_uint(value: int, name: str = "value", bits: int = DEFAULT_BITS) -> int:
    """Validate an externally supplied amount."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ArithmeticFault(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > _max(bits):
        raise ArithmeticFault(f"{name} {value} outside uint{bits} range")
    return value


def checked_add(a: int, b: int, bits: int = DEFAULT_BITS) -> int:
    result = a + b
    if result > _max(bits):
        raise ArithmeticFault(f"uint{bits} overflow: {a} + {b}")
    return result


def checked_sub(a: int, b: int, bits: int = DEFAULT_BITS) -> int:
    if b > a:
        raise ArithmeticFault(f"uint{bits} underflow: {a} - {b}")
    return a - b


def checked_mul(a: int, b: int, bits: int = DEFAULT_BITS) -> int:
    result = a * b
    if result > _max(bits):
        raise ArithmeticFault(f"uint{bits} overflow: {a} * {b}")
    return result


def floor_div(a: int, b: int) -> int:
    if b == 0:
        raise ArithmeticFault("division by zero")
    return a // b
