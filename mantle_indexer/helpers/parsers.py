"""Parsing utilities for raw JSON-RPC values."""

from datetime import UTC, datetime
from decimal import Decimal

from mantle_indexer.helpers.constants import WEI_PER_ETH


def parse_hex_int(hex_value: str | int | None, default: int = 0) -> int:
    """Parse hex string to integer.

    Args:
        hex_value: Hex-encoded string, an already-decoded int, or None
        default: Default value if hex_value is None or empty

    Returns:
        int: Parsed integer value

    Example:
        >>> parse_hex_int("0xff")
        255
        >>> parse_hex_int(None, 0)
        0
    """
    if hex_value is None or hex_value in {"", "0x"}:
        return default
    if isinstance(hex_value, int):
        return hex_value
    return int(hex_value, 16)


def parse_optional_hex_int(hex_value: str | int | None) -> int | None:
    """Parse hex string to integer, keeping None for absent fields.

    Example:
        >>> parse_optional_hex_int("0x10")
        16
        >>> parse_optional_hex_int(None) is None
        True
    """
    if hex_value is None:
        return None
    return parse_hex_int(hex_value)


def parse_hex_timestamp(hex_timestamp: str | int) -> datetime:
    """Parse Unix timestamp from hex string to an aware UTC datetime.

    Example:
        >>> parse_hex_timestamp("0x63a1b2c3")
        datetime.datetime(2022, 12, 20, ...)
    """
    return datetime.fromtimestamp(parse_hex_int(hex_timestamp), tz=UTC)


def normalize_address(address: str | None) -> str | None:
    """Lowercase an address; the store compares addresses case-insensitively.

    Example:
        >>> normalize_address("0xAbC")
        '0xabc'
    """
    if not address:
        return None
    return address.lower()


def normalize_hash(value: str) -> str:
    """Lowercase a 0x-prefixed hash."""
    return value.lower()


def strip_0x(hex_data: str | None) -> str:
    """Drop a 0x prefix, returning an empty string for None."""
    if not hex_data:
        return ""
    return hex_data[2:] if hex_data[:2] in {"0x", "0X"} else hex_data


def topic_to_address(topic: str) -> str:
    """Extract the address packed into the low 20 bytes of a 32 byte topic.

    Example:
        >>> topic_to_address("0x000000000000000000000000" + "ab" * 20)
        '0xabababababababababababababababababababab'
    """
    body = strip_0x(topic)
    if len(body) != 64:
        msg = f"Topic must be 32 bytes, got {len(body) // 2}"
        raise ValueError(msg)
    return "0x" + body[-40:].lower()


def split_words(hex_data: str | None) -> list[int]:
    """Split ABI-encoded data into 32 byte words as unsigned integers.

    Raises:
        ValueError: If the data is not a whole number of words
    """
    body = strip_0x(hex_data)
    if len(body) % 64:
        msg = f"ABI data length {len(body) // 2} is not a multiple of 32"
        raise ValueError(msg)
    return [int(body[i : i + 64], 16) for i in range(0, len(body), 64)]


def wei_to_eth(wei: int | Decimal | None) -> Decimal | None:
    """Convert Wei to ETH without leaving exact decimal arithmetic.

    Example:
        >>> wei_to_eth(1000000000000000000)
        Decimal('1')
        >>> wei_to_eth(None)
        None
    """
    if wei is None:
        return None
    return Decimal(wei) / WEI_PER_ETH


__all__ = [
    "normalize_address",
    "normalize_hash",
    "parse_hex_int",
    "parse_hex_timestamp",
    "parse_optional_hex_int",
    "split_words",
    "strip_0x",
    "topic_to_address",
    "wei_to_eth",
]
