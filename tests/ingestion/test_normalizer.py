"""Tests for block normalization."""

from datetime import UTC, datetime
from typing import Any

from mantle_indexer.data.transactions.models import Transaction, TxStatus, TxType
from mantle_indexer.data.transfers.models import TokenType
from mantle_indexer.helpers.models import RawReceipt, RawTransaction
from mantle_indexer.ingestion.decoder import APPROVAL_TOPIC, TRANSFER_TOPIC
from mantle_indexer.ingestion.normalizer import (
    REVERTED_MESSAGE,
    normalize_block,
    normalize_transaction,
)
from tests.factories import (
    ALICE,
    BOB,
    GENESIS_TIMESTAMP,
    TOKEN,
    address_topic,
    block_hash,
    erc20_transfer_log,
    erc721_transfer_log,
    erc1155_single_log,
    fetched_block,
    rpc_log,
    rpc_receipt,
    rpc_transaction,
    tx_hash,
    word,
)


TIMESTAMP = datetime(2024, 1, 1, tzinfo=UTC)


def _normalize_one(tx: dict[str, Any], receipt: dict[str, Any] | None) -> Transaction:
    return normalize_transaction(
        RawTransaction.model_validate(tx),
        RawReceipt.model_validate(receipt) if receipt else None,
        1,
        TIMESTAMP,
    )


class TestNormalizeTransaction:
    """Tests for transaction classification and fields."""

    def test_plain_transfer(self) -> None:
        """Test a value transfer without call data."""
        h = tx_hash(1, 0)
        row = _normalize_one(rpc_transaction(h, value=5 * 10**18), rpc_receipt(h))

        assert row.tx_type == TxType.TRANSFER
        assert row.status == TxStatus.SUCCESS
        assert row.value == 5 * 10**18
        assert row.contract_address is None
        assert row.input_data is None
        assert row.method_signature is None
        assert row.gas_used == 21_000
        assert row.effective_gas_price == 20 * 10**9
        assert row.metadata == {"type": 2}

    def test_contract_call(self) -> None:
        """Test call data makes a contract call against ``to``."""
        h = tx_hash(1, 0)
        mixed_case = "0x" + TOKEN[2:].upper()
        tx = rpc_transaction(h, to=mixed_case, input_data="0xa9059cbb" + word(1))
        row = _normalize_one(tx, rpc_receipt(h))

        assert row.tx_type == TxType.CONTRACT_CALL
        assert row.contract_address == TOKEN
        assert row.to_address == TOKEN
        assert row.method_signature == "0xa9059cbb"
        assert row.decoded_method == "transfer"

    def test_contract_creation(self) -> None:
        """Test the created address comes from the receipt."""
        h = tx_hash(1, 0)
        created = "0x" + "c0" * 20
        row = _normalize_one(
            rpc_transaction(h, to=None, input_data="0x6080"),
            rpc_receipt(h, contract_address=created),
        )

        assert row.tx_type == TxType.CONTRACT_CREATION
        assert row.contract_address == created
        assert row.to_address is None

    def test_failed_transaction(self) -> None:
        """Test status 0 receipts."""
        h = tx_hash(1, 0)
        row = _normalize_one(rpc_transaction(h), rpc_receipt(h, status=0))

        assert row.status == TxStatus.FAILED
        assert row.error_message == REVERTED_MESSAGE

    def test_missing_receipt_is_pending(self) -> None:
        """Test a transaction without a receipt yet."""
        row = _normalize_one(rpc_transaction(tx_hash(1, 0)), None)

        assert row.status == TxStatus.PENDING
        assert row.gas_used is None
        assert row.error_message is None

    def test_receipt_without_status(self) -> None:
        """Test pre-Byzantium receipts count as success."""
        h = tx_hash(1, 0)
        row = _normalize_one(rpc_transaction(h), rpc_receipt(h, status=None))

        assert row.status == TxStatus.SUCCESS

    def test_legacy_transaction_has_no_type(self) -> None:
        """Test metadata stays empty without an envelope type."""
        h = tx_hash(1, 0)
        row = _normalize_one(rpc_transaction(h, tx_type=None), rpc_receipt(h))

        assert row.metadata == {}

    def test_addresses_roles(self) -> None:
        """Test role mapping skips absent addresses."""
        h = tx_hash(1, 0)
        row = _normalize_one(rpc_transaction(h), rpc_receipt(h))

        assert row.addresses() == {"from": ALICE, "to": BOB}


class TestNormalizeBlock:
    """Tests for normalize_block."""

    def test_block_fields(self) -> None:
        """Test header values."""
        result = normalize_block(fetched_block(10))

        assert result.block.block_number == 10
        assert result.block.block_hash == block_hash(10)
        assert result.block.parent_hash == block_hash(9)
        assert result.block.timestamp == datetime.fromtimestamp(
            GENESIS_TIMESTAMP + 20, tz=UTC
        )
        assert result.block.transaction_count == 0
        assert result.transactions == []

    def test_hashes_are_lowercased(self) -> None:
        """Test mixed case hashes from the node."""
        fetched = fetched_block(10)
        fetched.block.hash = fetched.block.hash.upper().replace("0X", "0x")

        assert normalize_block(fetched).block.block_hash == block_hash(10)

    def test_logs_become_events_and_transfers(self) -> None:
        """Test child rows for every log kind."""
        h = tx_hash(5, 0)
        logs = [
            erc20_transfer_log(ALICE, BOB, 1000, log_index=0),
            erc721_transfer_log(ALICE, BOB, 9, log_index=1),
            erc1155_single_log(ALICE, ALICE, BOB, 3, 4, log_index=2),
            rpc_log(
                TOKEN,
                [APPROVAL_TOPIC, address_topic(ALICE), address_topic(BOB)],
                "0x" + word(1),
                log_index=3,
            ),
            rpc_log(TOKEN, [], "0x", log_index=4),
        ]
        result = normalize_block(
            fetched_block(
                5,
                transactions=[rpc_transaction(h, input_data="0xa9059cbb")],
                receipts=[rpc_receipt(h, logs=logs)],
            )
        )

        assert [e.log_index for e in result.events] == [0, 1, 2, 3, 4]
        assert [t.token_type for t in result.transfers] == [
            TokenType.ERC20,
            TokenType.ERC721,
            TokenType.ERC1155,
        ]
        assert result.events[0].event_name == "Transfer"
        assert result.events[0].event_signature == TRANSFER_TOPIC
        assert result.events[0].decoded_data == {"from": ALICE, "to": BOB, "value": "1000"}
        assert result.events[3].event_name == "Approval"
        assert result.events[4].event_signature == "0x"
        assert result.events[4].decoded_data is None
        assert all(t.tx_hash == h for t in result.transfers)
        assert all(e.block_number == 5 for e in result.events)

    def test_removed_logs_are_skipped(self) -> None:
        """Test logs flagged removed never become rows."""
        h = tx_hash(5, 0)
        removed = erc20_transfer_log(ALICE, BOB, 1, log_index=0)
        removed["removed"] = True
        result = normalize_block(
            fetched_block(
                5,
                transactions=[rpc_transaction(h)],
                receipts=[
                    rpc_receipt(h, logs=[removed, erc20_transfer_log(ALICE, BOB, 2, 1)])
                ],
            )
        )

        assert [e.log_index for e in result.events] == [1]
        assert [t.amount for t in result.transfers] == [2]

    def test_transactions_sorted_by_index(self) -> None:
        """Test out-of-order transactions from the node are sorted."""
        h0, h1 = tx_hash(5, 0), tx_hash(5, 1)
        result = normalize_block(
            fetched_block(
                5,
                transactions=[rpc_transaction(h1, 1), rpc_transaction(h0, 0)],
                receipts=[rpc_receipt(h0), rpc_receipt(h1)],
            )
        )

        assert [t.tx_index for t in result.transactions] == [0, 1]

    def test_missing_receipt_has_no_children(self) -> None:
        """Test a transaction without a receipt yields no logs."""
        h = tx_hash(5, 0)
        result = normalize_block(
            fetched_block(5, transactions=[rpc_transaction(h)], receipts=[None])
        )

        assert result.transactions[0].status == TxStatus.PENDING
        assert result.events == []
        assert result.transfers == []
