"""
Unit conversion between Compose resource notation and Nomad's.

Compose expresses CPU in cores and memory as byte counts with an optional
b/k/m/g suffix; Nomad wants MHz and MB.
"""
import math
import re
from typing import Union

MEMORY_UNITS = {
    "b": 1,
    "k": 1024,
    "m": 1024 * 1024,
    "g": 1024 * 1024 * 1024,
}

MHZ_PER_CORE = 1000

_MEMORY_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*([kmg]?)b?$")
_MEMORY_SPEC_PATTERN = re.compile(r"^\d+[bkmg]?$", re.IGNORECASE)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_cpu(value: Union[str, int, float]) -> int:
    """
    Converts a CPU core count into MHz.

    :param value: Cores, as a number or numeric string (e.g. ``"0.5"``).
    :return: The equivalent MHz, rounded.
    :raises ValueError: If the value is not numeric.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid CPU value: {value!r}")
    return round_half_up(float(value) * MHZ_PER_CORE)


def parse_bytes(value: Union[str, int, float]) -> int:
    """
    Converts a memory specification into bytes.

    Numbers are already bytes; strings take an optional b/k/m/g unit,
    case-insensitive, optionally followed by ``b`` (``512mb``).

    :raises ValueError: If the string does not match the unit syntax.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid memory value: {value!r}")
    if isinstance(value, (int, float)):
        return round_half_up(value)

    match = _MEMORY_PATTERN.match(str(value).strip().lower())
    if not match:
        raise ValueError(f"Unable to parse memory value: {value}")
    amount = float(match.group(1))
    unit = match.group(2) or "b"
    return round_half_up(amount * MEMORY_UNITS[unit])


def parse_memory(value: Union[str, int, float]) -> int:
    """
    Converts a memory specification into MB.

    ``"512M"`` is 512, ``"1G"`` is 1024 and the bare byte count
    ``2147483648`` is 2048.

    :raises ValueError: If the value cannot be parsed.
    """
    return round_half_up(parse_bytes(value) / MEMORY_UNITS["m"])


def is_valid_cpu_spec(value) -> bool:
    """
    Returns True for a positive floating point core count.
    """
    if isinstance(value, bool):
        return False
    try:
        cpus = float(value)
    except (TypeError, ValueError):
        return False
    return cpus > 0 and not math.isnan(cpus)


def is_valid_memory_spec(value) -> bool:
    """
    Returns True for ``digits[unit]`` with unit one of b, k, m, g.
    """
    if isinstance(value, bool):
        return False
    return bool(_MEMORY_SPEC_PATTERN.match(str(value)))
