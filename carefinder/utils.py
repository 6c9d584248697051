import hashlib
import math
import time


def truncate(value: str, max_len: int) -> str:
    if len(value) <= max_len:
        return value
    return value[: max_len - 3] + "..."


def ms_now() -> int:
    return time.monotonic_ns() // 1_000_000


def round_half_up(value: float) -> int:
    # builtin round() is banker's rounding; scores use the usual .5-up rule
    return math.floor(value + 0.5)


def short_hash(value: str, length: int = 16) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]
