"""Tests for call data and log decoding."""

import pytest

from mantle_indexer.data.transfers.models import TokenType
from mantle_indexer.ingestion.decoder import (
    APPROVAL_TOPIC,
    SWAP_V3_TOPIC,
    TRANSFER_BATCH_TOPIC,
    TRANSFER_SINGLE_TOPIC,
    TRANSFER_TOPIC,
    decode_event_name,
    decode_log,
    decode_method,
    extract_token_transfer,
    method_selector,
)
from tests.factories import ALICE, BOB, address_topic, word


class TestMethodDecoding:
    """Tests for method selector lookup."""

    def test_known_selector(self) -> None:
        """Test an ERC20 transfer call."""
        data = "0xa9059cbb" + word(1) + word(2)

        assert method_selector(data) == "0xa9059cbb"
        assert decode_method(data) == "transfer"

    def test_selector_is_lowercased(self) -> None:
        """Test mixed case call data."""
        assert method_selector("0xA9059CBB") == "0xa9059cbb"

    def test_unknown_selector(self) -> None:
        """Test an unknown selector keeps the selector but has no name."""
        assert method_selector("0xdeadbeef00") == "0xdeadbeef"
        assert decode_method("0xdeadbeef00") is None

    @pytest.mark.parametrize("data", [None, "", "0x", "0x1234"])
    def test_no_selector(self, data: str | None) -> None:
        """Test plain transfers and short input."""
        assert method_selector(data) is None
        assert decode_method(data) is None


class TestDecodeLog:
    """Tests for decode_log."""

    def test_erc20_transfer(self) -> None:
        """Test fields and string encoding of large values."""
        amount = 2**200
        decoded = decode_log(
            [TRANSFER_TOPIC, address_topic(ALICE), address_topic(BOB)],
            "0x" + word(amount),
        )

        assert decoded == {"from": ALICE, "to": BOB, "value": str(amount)}

    def test_erc721_transfer(self) -> None:
        """Test the token id comes from topic3."""
        decoded = decode_log(
            [TRANSFER_TOPIC, address_topic(ALICE), address_topic(BOB), "0x" + word(7)],
            "0x",
        )

        assert decoded == {"from": ALICE, "to": BOB, "tokenId": "7"}

    def test_approval(self) -> None:
        """Test ERC20 approval."""
        decoded = decode_log(
            [APPROVAL_TOPIC, address_topic(ALICE), address_topic(BOB)],
            "0x" + word(5),
        )

        assert decoded == {"owner": ALICE, "spender": BOB, "value": "5"}

    def test_transfer_batch_arrays(self) -> None:
        """Test dynamic arrays in TransferBatch."""
        data = "0x" + "".join(
            [
                word(64),  # offset of ids
                word(160),  # offset of values
                word(2),
                word(1),
                word(2),
                word(2),
                word(10),
                word(20),
            ]
        )
        decoded = decode_log(
            [
                TRANSFER_BATCH_TOPIC,
                address_topic(ALICE),
                address_topic(ALICE),
                address_topic(BOB),
            ],
            data,
        )

        assert decoded is not None
        assert decoded["ids"] == ["1", "2"]
        assert decoded["values"] == ["10", "20"]

    def test_swap_v3_signed_values(self) -> None:
        """Test two's complement amounts and tick."""
        data = "0x" + "".join(
            [word(2**256 - 5), word(9), word(1), word(100), word(2**256 - 3)]
        )
        decoded = decode_log(
            [SWAP_V3_TOPIC, address_topic(ALICE), address_topic(BOB)], data
        )

        assert decoded is not None
        assert decoded["amount0"] == "-5"
        assert decoded["amount1"] == "9"
        assert decoded["tick"] == -3

    def test_unknown_topic(self) -> None:
        """Test unknown events decode to None."""
        assert decode_log(["0x" + "12" * 32], "0x") is None
        assert decode_event_name(["0x" + "12" * 32]) is None

    def test_anonymous_log(self) -> None:
        """Test logs without topics."""
        assert decode_log([], "0x") is None
        assert decode_event_name([]) is None

    def test_malformed_payload(self) -> None:
        """Test a known topic with a truncated payload never raises."""
        assert decode_log([TRANSFER_TOPIC, address_topic(ALICE)], "0x") is None
        assert (
            decode_log(
                [TRANSFER_TOPIC, address_topic(ALICE), address_topic(BOB)], "0x1234"
            )
            is None
        )

    def test_event_name_case_insensitive(self) -> None:
        """Test topic0 lookups ignore case."""
        assert decode_event_name([TRANSFER_TOPIC.upper()]) == "Transfer"


class TestExtractTokenTransfer:
    """Tests for extract_token_transfer."""

    def test_erc20(self) -> None:
        """Test three-topic Transfer."""
        transfer = extract_token_transfer(
            [TRANSFER_TOPIC, address_topic(ALICE), address_topic(BOB)],
            "0x" + word(10**30),
        )

        assert transfer is not None
        assert transfer.token_type == TokenType.ERC20
        assert transfer.from_address == ALICE
        assert transfer.to_address == BOB
        assert transfer.amount == 10**30
        assert transfer.token_id is None

    def test_erc721(self) -> None:
        """Test four-topic Transfer has an id and no amount."""
        transfer = extract_token_transfer(
            [TRANSFER_TOPIC, address_topic(ALICE), address_topic(BOB), "0x" + word(42)],
            "0x",
        )

        assert transfer is not None
        assert transfer.token_type == TokenType.ERC721
        assert transfer.token_id == 42
        assert transfer.amount is None

    def test_erc1155_single(self) -> None:
        """Test TransferSingle reads from/to from topics 2 and 3."""
        transfer = extract_token_transfer(
            [
                TRANSFER_SINGLE_TOPIC,
                address_topic("0x" + "cc" * 20),
                address_topic(ALICE),
                address_topic(BOB),
            ],
            "0x" + word(3) + word(25),
        )

        assert transfer is not None
        assert transfer.token_type == TokenType.ERC1155
        assert transfer.from_address == ALICE
        assert transfer.to_address == BOB
        assert transfer.token_id == 3
        assert transfer.amount == 25

    def test_non_transfer(self) -> None:
        """Test other events are not transfers."""
        assert (
            extract_token_transfer(
                [APPROVAL_TOPIC, address_topic(ALICE), address_topic(BOB)],
                "0x" + word(1),
            )
            is None
        )

    def test_erc20_without_data(self) -> None:
        """Test a malformed ERC20 Transfer is dropped."""
        assert (
            extract_token_transfer(
                [TRANSFER_TOPIC, address_topic(ALICE), address_topic(BOB)], "0x"
            )
            is None
        )
