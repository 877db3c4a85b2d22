"""Conversion of fetched RPC payloads into store rows."""

from datetime import datetime

from pydantic import BaseModel, Field

from mantle_indexer.data.blocks.models import Block
from mantle_indexer.data.events.models import ContractEvent
from mantle_indexer.data.transactions.models import Transaction, TxStatus, TxType
from mantle_indexer.data.transfers.models import TokenTransfer
from mantle_indexer.helpers.db_mixins import utcnow
from mantle_indexer.helpers.models import FetchedBlock, RawLog, RawReceipt, RawTransaction
from mantle_indexer.helpers.parsers import (
    normalize_address,
    normalize_hash,
    parse_hex_int,
    parse_hex_timestamp,
    parse_optional_hex_int,
    strip_0x,
)
from mantle_indexer.ingestion.decoder import (
    decode_event_name,
    decode_log,
    decode_method,
    extract_token_transfer,
    method_selector,
)


REVERTED_MESSAGE = "Transaction reverted"


class NormalizedBlock(BaseModel):
    """Every row one block contributes, in write order."""

    block: Block
    transactions: list[Transaction] = Field(default_factory=list)
    transfers: list[TokenTransfer] = Field(default_factory=list)
    events: list[ContractEvent] = Field(default_factory=list)


def _status(receipt: RawReceipt | None) -> TxStatus:
    if receipt is None:
        return TxStatus.PENDING
    if receipt.status is None:
        # Pre-Byzantium receipts carry a state root instead
        return TxStatus.SUCCESS
    return TxStatus.SUCCESS if parse_hex_int(receipt.status) == 1 else TxStatus.FAILED


def _tx_type(tx: RawTransaction) -> TxType:
    if tx.to_address is None:
        return TxType.CONTRACT_CREATION
    if strip_0x(tx.input):
        return TxType.CONTRACT_CALL
    return TxType.TRANSFER


def normalize_transaction(
    tx: RawTransaction,
    receipt: RawReceipt | None,
    block_number: int,
    block_timestamp: datetime,
) -> Transaction:
    """Build the transaction row from the transaction object and its receipt."""
    tx_type = _tx_type(tx)
    status = _status(receipt)

    if tx_type == TxType.CONTRACT_CREATION:
        contract_address = normalize_address(receipt.contract_address if receipt else None)
    elif tx_type == TxType.CONTRACT_CALL:
        contract_address = normalize_address(tx.to_address)
    else:
        contract_address = None

    metadata: dict[str, int] = {}
    if tx.type is not None:
        metadata["type"] = parse_hex_int(tx.type)

    return Transaction(
        tx_hash=normalize_hash(tx.hash),
        tx_index=parse_hex_int(tx.transaction_index),
        block_number=block_number,
        block_timestamp=block_timestamp,
        from_address=normalize_address(tx.from_address) or "",
        to_address=normalize_address(tx.to_address),
        value=parse_hex_int(tx.value),
        input_data=tx.input if strip_0x(tx.input) else None,
        nonce=parse_hex_int(tx.nonce),
        gas_limit=parse_hex_int(tx.gas),
        gas_used=parse_optional_hex_int(receipt.gas_used) if receipt else None,
        gas_price=parse_optional_hex_int(tx.gas_price),
        max_fee_per_gas=parse_optional_hex_int(tx.max_fee_per_gas),
        max_priority_fee_per_gas=parse_optional_hex_int(tx.max_priority_fee_per_gas),
        effective_gas_price=(
            parse_optional_hex_int(receipt.effective_gas_price) if receipt else None
        ),
        status=status,
        tx_type=tx_type,
        contract_address=contract_address,
        method_signature=method_selector(tx.input),
        decoded_method=decode_method(tx.input),
        error_message=REVERTED_MESSAGE if status == TxStatus.FAILED else None,
        metadata=metadata,
    )


def normalize_log(
    log: RawLog, tx_hash: str, block_number: int, timestamp: datetime
) -> tuple[ContractEvent, TokenTransfer | None]:
    """Build the event row and, for token transfers, the transfer row."""
    log_index = parse_hex_int(log.log_index)
    topics = [topic.lower() for topic in log.topics]
    address = normalize_address(log.address) or ""

    event = ContractEvent(
        tx_hash=tx_hash,
        log_index=log_index,
        block_number=block_number,
        contract_address=address,
        event_signature=topics[0] if topics else "0x",
        event_name=decode_event_name(topics),
        topics=topics,
        data=log.data,
        decoded_data=decode_log(topics, log.data),
        timestamp=timestamp,
    )

    transfer = None
    decoded = extract_token_transfer(topics, log.data)
    if decoded is not None:
        transfer = TokenTransfer(
            tx_hash=tx_hash,
            log_index=log_index,
            block_number=block_number,
            token_address=address,
            token_type=decoded.token_type,
            from_address=decoded.from_address,
            to_address=decoded.to_address,
            amount=decoded.amount,
            token_id=decoded.token_id,
            timestamp=timestamp,
        )
    return event, transfer


def normalize_block(fetched: FetchedBlock) -> NormalizedBlock:
    """Turn one fetched block into ordered rows.

    Transactions come out in ``tx_index`` order and child rows in
    ``log_index`` order. Logs flagged ``removed`` are skipped.

    Args:
        fetched: Block with full transactions and receipts

    Returns:
        The block's rows
    """
    raw = fetched.block
    block_number = fetched.number
    timestamp = parse_hex_timestamp(raw.timestamp)

    block = Block(
        block_number=block_number,
        block_hash=fetched.hash,
        parent_hash=fetched.parent_hash,
        timestamp=timestamp,
        transaction_count=len(raw.transactions),
        gas_used=parse_hex_int(raw.gas_used),
        gas_limit=parse_hex_int(raw.gas_limit),
        base_fee_per_gas=parse_optional_hex_int(raw.base_fee_per_gas),
        indexed_at=utcnow(),
    )

    transactions: list[Transaction] = []
    events: list[ContractEvent] = []
    transfers: list[TokenTransfer] = []

    for tx in raw.transactions:
        receipt = fetched.receipts.get(tx.hash.lower())
        row = normalize_transaction(tx, receipt, block_number, timestamp)
        transactions.append(row)

        if receipt is None:
            continue
        for log in receipt.logs:
            if log.removed:
                continue
            event, transfer = normalize_log(log, row.tx_hash, block_number, timestamp)
            events.append(event)
            if transfer is not None:
                transfers.append(transfer)

    transactions.sort(key=lambda t: t.tx_index)
    events.sort(key=lambda e: e.log_index)
    transfers.sort(key=lambda t: t.log_index)

    return NormalizedBlock(
        block=block, transactions=transactions, transfers=transfers, events=events
    )


__all__ = ["NormalizedBlock", "normalize_block", "normalize_log", "normalize_transaction"]
