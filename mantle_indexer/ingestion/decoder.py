"""Best-effort decoding of call data and logs.

Everything here is pure. Unknown selectors, unknown topics and malformed
payloads decode to ``None``; nothing in this module raises on chain data.
Integers that can exceed 64 bits are emitted as decimal strings in the
structured output so they survive a JSONB round trip exactly.
"""

from typing import Any

from pydantic import BaseModel

from mantle_indexer.data.transfers.models import TokenType
from mantle_indexer.helpers.parsers import split_words, strip_0x, topic_to_address


# 4-byte method selectors
METHOD_SIGNATURES: dict[str, str] = {
    # ERC20 / ERC721
    "0xa9059cbb": "transfer",
    "0x095ea7b3": "approve",
    "0x23b872dd": "transferFrom",
    "0x42842e0e": "safeTransferFrom",
    "0xb88d4fde": "safeTransferFrom",
    "0xa22cb465": "setApprovalForAll",
    # ERC1155
    "0xf242432a": "safeTransferFrom",
    "0x2eb2c2d6": "safeBatchTransferFrom",
    # WETH / WMNT
    "0xd0e30db0": "deposit",
    "0x2e1a7d4d": "withdraw",
    # DEX routers
    "0x38ed1739": "swapExactTokensForTokens",
    "0x8803dbee": "swapTokensForExactTokens",
    "0x7ff36ab5": "swapExactETHForTokens",
    "0x18cbafe5": "swapExactTokensForETH",
    "0xe8e33700": "addLiquidity",
    "0xbaa2abde": "removeLiquidity",
    "0x414bf389": "exactInputSingle",
    "0xc04b8d59": "exactInput",
    "0xac9650d8": "multicall",
    "0x3593564c": "execute",
}

# Event topic0 values (keccak256 of the canonical signature)
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
APPROVAL_TOPIC = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"
TRANSFER_SINGLE_TOPIC = (
    "0xc3d58168c5ae7397731d063d5bbf3d657854427343f4c083240f7aacaa2d0f62"
)
TRANSFER_BATCH_TOPIC = (
    "0x4a39dc06d4c0dbc64b70af90fd698a233a518aa5d07e595d983b8c0526c8f7fb"
)
APPROVAL_FOR_ALL_TOPIC = (
    "0x17307eab39ab6107e8899845ad3d59bd9653f200f220920489ca2b5937696c31"
)
DEPOSIT_TOPIC = "0xe1fffcc4923d04b559f4d29a8bfc6cda04eb5b0d3c460751c2402c5c5cc9109c"
WITHDRAWAL_TOPIC = "0x7fcf532c15f0a6db0bd6d0e038bea71d30d808c7d98cb3bf7268a95bf5081b65"
SWAP_V2_TOPIC = "0xd78ad95fa46c994b6551d0da85fc275fe613ce37657fb8d5e3d130840159d822"
SYNC_TOPIC = "0x1c411e9a96e071241c2f21f7726b17ae89e3cab4c78be50e062b03a9fffbbad1"
SWAP_V3_TOPIC = "0xc42079f94a6350d7e6235f29174924f928cc2ac818eb64fed8004e115fbcca67"
OWNERSHIP_TRANSFERRED_TOPIC = (
    "0x8be0079c531659141344cd1fd0a4f28419497f9722a3daafe3b4186f6b6457e0"
)

EVENT_SIGNATURES: dict[str, str] = {
    TRANSFER_TOPIC: "Transfer",
    APPROVAL_TOPIC: "Approval",
    TRANSFER_SINGLE_TOPIC: "TransferSingle",
    TRANSFER_BATCH_TOPIC: "TransferBatch",
    APPROVAL_FOR_ALL_TOPIC: "ApprovalForAll",
    DEPOSIT_TOPIC: "Deposit",
    WITHDRAWAL_TOPIC: "Withdrawal",
    SWAP_V2_TOPIC: "Swap",
    SYNC_TOPIC: "Sync",
    SWAP_V3_TOPIC: "Swap",
    OWNERSHIP_TRANSFERRED_TOPIC: "OwnershipTransferred",
}

_INT256_SIGN = 2**255
_WORD_BITS = 2**256


class DecodedTransfer(BaseModel):
    """Token movement recovered from a single log."""

    token_type: TokenType
    from_address: str
    to_address: str
    amount: int | None = None
    token_id: int | None = None


def method_selector(input_data: str | None) -> str | None:
    """The 4-byte selector of call data, lowercase, or None for plain transfers.

    Example:
        >>> method_selector("0xa9059cbb000000")
        '0xa9059cbb'
        >>> method_selector("0x") is None
        True
    """
    body = strip_0x(input_data)
    if len(body) < 8:
        return None
    return "0x" + body[:8].lower()


def decode_method(input_data: str | None) -> str | None:
    """Method name for known selectors."""
    selector = method_selector(input_data)
    if selector is None:
        return None
    return METHOD_SIGNATURES.get(selector)


def decode_event_name(topics: list[str]) -> str | None:
    """Event name for a known topic0."""
    if not topics:
        return None
    return EVENT_SIGNATURES.get(topics[0].lower())


def _signed(word: int) -> int:
    return word - _WORD_BITS if word >= _INT256_SIGN else word


def _read_uint_array(words: list[int], offset_bytes: int) -> list[int]:
    start = offset_bytes // 32
    length = words[start]
    values = words[start + 1 : start + 1 + length]
    if len(values) != length:
        msg = "Truncated ABI array"
        raise ValueError(msg)
    return values


def _decode_fields(topic0: str, topics: list[str], data: str | None) -> dict[str, Any]:
    words = split_words(data)

    if topic0 == TRANSFER_TOPIC:
        if len(topics) == 4:
            return {
                "from": topic_to_address(topics[1]),
                "to": topic_to_address(topics[2]),
                "tokenId": str(int(topics[3], 16)),
            }
        return {
            "from": topic_to_address(topics[1]),
            "to": topic_to_address(topics[2]),
            "value": str(words[0]),
        }

    if topic0 == APPROVAL_TOPIC:
        fields = {
            "owner": topic_to_address(topics[1]),
            "spender": topic_to_address(topics[2]),
        }
        if len(topics) == 4:
            fields["tokenId"] = str(int(topics[3], 16))
        else:
            fields["value"] = str(words[0])
        return fields

    if topic0 == TRANSFER_SINGLE_TOPIC:
        return {
            "operator": topic_to_address(topics[1]),
            "from": topic_to_address(topics[2]),
            "to": topic_to_address(topics[3]),
            "id": str(words[0]),
            "value": str(words[1]),
        }

    if topic0 == TRANSFER_BATCH_TOPIC:
        return {
            "operator": topic_to_address(topics[1]),
            "from": topic_to_address(topics[2]),
            "to": topic_to_address(topics[3]),
            "ids": [str(v) for v in _read_uint_array(words, words[0])],
            "values": [str(v) for v in _read_uint_array(words, words[1])],
        }

    if topic0 == APPROVAL_FOR_ALL_TOPIC:
        return {
            "owner": topic_to_address(topics[1]),
            "operator": topic_to_address(topics[2]),
            "approved": bool(words[0]),
        }

    if topic0 == DEPOSIT_TOPIC:
        return {"dst": topic_to_address(topics[1]), "wad": str(words[0])}

    if topic0 == WITHDRAWAL_TOPIC:
        return {"src": topic_to_address(topics[1]), "wad": str(words[0])}

    if topic0 == SWAP_V2_TOPIC:
        return {
            "sender": topic_to_address(topics[1]),
            "to": topic_to_address(topics[2]),
            "amount0In": str(words[0]),
            "amount1In": str(words[1]),
            "amount0Out": str(words[2]),
            "amount1Out": str(words[3]),
        }

    if topic0 == SYNC_TOPIC:
        return {"reserve0": str(words[0]), "reserve1": str(words[1])}

    if topic0 == SWAP_V3_TOPIC:
        return {
            "sender": topic_to_address(topics[1]),
            "recipient": topic_to_address(topics[2]),
            "amount0": str(_signed(words[0])),
            "amount1": str(_signed(words[1])),
            "sqrtPriceX96": str(words[2]),
            "liquidity": str(words[3]),
            "tick": _signed(words[4]),
        }

    if topic0 == OWNERSHIP_TRANSFERRED_TOPIC:
        return {
            "previousOwner": topic_to_address(topics[1]),
            "newOwner": topic_to_address(topics[2]),
        }

    msg = f"No layout for topic {topic0}"
    raise KeyError(msg)


def decode_log(topics: list[str], data: str | None) -> dict[str, Any] | None:
    """Structured fields of a known event.

    Args:
        topics: Log topics, topic0 first
        data: Non-indexed ABI data

    Returns:
        Field name to value mapping, or None when the event is unknown or the
        payload does not match the expected layout

    Example:
        >>> decode_log([TRANSFER_TOPIC, sender_topic, receiver_topic], "0x" + "00" * 31 + "0a")
        {'from': '0x...', 'to': '0x...', 'value': '10'}
    """
    if not topics:
        return None
    topic0 = topics[0].lower()
    if topic0 not in EVENT_SIGNATURES:
        return None
    try:
        return _decode_fields(topic0, topics, data)
    except (IndexError, KeyError, ValueError):
        return None


def extract_token_transfer(topics: list[str], data: str | None) -> DecodedTransfer | None:
    """Recover a token transfer from a log.

    ``Transfer`` with three topics is ERC20 (amount in data); with four it is
    ERC721 (token id in topic3, no amount). ``TransferSingle`` is ERC1155.
    Batch transfers are decoded as events only.

    Returns:
        The transfer, or None if the log is not a well-formed transfer
    """
    if not topics:
        return None
    topic0 = topics[0].lower()
    try:
        if topic0 == TRANSFER_TOPIC and len(topics) == 3:
            words = split_words(data)
            return DecodedTransfer(
                token_type=TokenType.ERC20,
                from_address=topic_to_address(topics[1]),
                to_address=topic_to_address(topics[2]),
                amount=words[0],
            )
        if topic0 == TRANSFER_TOPIC and len(topics) == 4:
            return DecodedTransfer(
                token_type=TokenType.ERC721,
                from_address=topic_to_address(topics[1]),
                to_address=topic_to_address(topics[2]),
                token_id=int(topics[3], 16),
            )
        if topic0 == TRANSFER_SINGLE_TOPIC and len(topics) == 4:
            words = split_words(data)
            return DecodedTransfer(
                token_type=TokenType.ERC1155,
                from_address=topic_to_address(topics[2]),
                to_address=topic_to_address(topics[3]),
                token_id=words[0],
                amount=words[1],
            )
    except (IndexError, ValueError):
        return None
    return None


__all__ = [
    "EVENT_SIGNATURES",
    "METHOD_SIGNATURES",
    "DecodedTransfer",
    "decode_event_name",
    "decode_log",
    "decode_method",
    "extract_token_transfer",
    "method_selector",
]
