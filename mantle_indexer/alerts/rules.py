"""Alert rules.

A rule looks at one ingested batch plus an evaluation context and returns
alert drafts. Rules do not write anything; the evaluator stores what they
return. New rules are added by appending to the evaluator's rule list.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from mantle_indexer.alerts.models import AlertDraft, AlertType, Severity
from mantle_indexer.helpers.parsers import wei_to_eth


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from mantle_indexer.data.transactions.models import Transaction
    from mantle_indexer.data.watchlist.models import WatchedAddress
    from mantle_indexer.ingestion.writer import IngestedBatch


class EvaluationContext:
    """What a rule may consult besides the batch itself.

    Attributes:
        watchlist: Snapshot of active watch entries keyed by lowercase address,
            taken once per batch
        count_failed: Coroutine counting failed transactions stored with a
            block timestamp in ``(start, end]``
    """

    def __init__(
        self,
        watchlist: dict[str, WatchedAddress],
        count_failed: Callable[[datetime, datetime], Awaitable[int]],
    ) -> None:
        self.watchlist = watchlist
        self.count_failed = count_failed


class AlertRule:
    """Base class for rules."""

    name = "rule"

    async def evaluate(
        self, batch: IngestedBatch, context: EvaluationContext
    ) -> list[AlertDraft]:
        """Return the alerts this batch triggers."""
        raise NotImplementedError


class WatchedAddressRule(AlertRule):
    """One alert per transaction touching an active watched address.

    All matched roles (from, to, contract) are listed in the same alert. The
    severity is the highest implied by any matched entry.
    """

    name = "watched_address"

    async def evaluate(
        self, batch: IngestedBatch, context: EvaluationContext
    ) -> list[AlertDraft]:
        drafts: list[AlertDraft] = []
        for tx in batch.transactions:
            matches = {
                role: address
                for role, address in tx.addresses().items()
                if address in context.watchlist
            }
            if matches:
                drafts.append(self._draft(tx, matches, context.watchlist))
        return drafts

    def _draft(
        self,
        tx: Transaction,
        matches: dict[str, str],
        watchlist: dict[str, WatchedAddress],
    ) -> AlertDraft:
        entries = [watchlist[address] for address in dict.fromkeys(matches.values())]
        severity = max(
            (Severity.parse(entry.severity, Severity.WARNING) for entry in entries),
            key=lambda s: s.rank,
        )
        primary = entries[0]
        label = primary.label or primary.address
        roles = ", ".join(f"{role}={address}" for role, address in matches.items())

        message = f"Transaction {tx.tx_hash} in block {tx.block_number} involves {roles}"
        if primary.watch_reason:
            message += f". Watch reason: {primary.watch_reason}"

        return AlertDraft(
            alert_type=AlertType.WATCHED_ADDRESS,
            severity=severity,
            title=f"Watched address activity: {label}"[:255],
            message=message,
            tx_hash=tx.tx_hash,
            block_number=tx.block_number,
            address=primary.address,
            metadata={
                "rule": self.name,
                "roles": matches,
                "labels": {e.address: e.label for e in entries if e.label},
                "address_types": {
                    e.address: e.address_type for e in entries if e.address_type
                },
                "tx_status": tx.status.value,
            },
        )


class FailedTransactionFrequencyRule(AlertRule):
    """Alert when failed transactions spike.

    Counts failed transactions in the store over the window ending at the
    batch's block timestamp. After firing, the rule stays quiet for one
    window.
    """

    name = "failed_tx_frequency"

    def __init__(self, threshold: int, window_seconds: int) -> None:
        """Initialize the rule.

        Args:
            threshold: Alert when the count exceeds this
            window_seconds: Length of the counting window
        """
        self.threshold = threshold
        self.window = timedelta(seconds=window_seconds)
        self.last_fired_at: datetime | None = None

    async def evaluate(
        self, batch: IngestedBatch, context: EvaluationContext
    ) -> list[AlertDraft]:
        if not any(tx.status == "failed" for tx in batch.transactions):
            return []

        end = batch.block.timestamp
        if self.last_fired_at is not None and end - self.last_fired_at < self.window:
            return []

        count = await context.count_failed(end - self.window, end)
        if count <= self.threshold:
            return []

        self.last_fired_at = end
        severity = Severity.CRITICAL if count >= 2 * self.threshold else Severity.WARNING
        window_seconds = int(self.window.total_seconds())
        return [
            AlertDraft(
                alert_type=AlertType.FAILED_TX_SPIKE,
                severity=severity,
                title=f"{count} failed transactions in {window_seconds}s",
                message=(
                    f"{count} failed transactions in the {window_seconds}s up to "
                    f"block {batch.block.block_number} (threshold {self.threshold})"
                ),
                block_number=batch.block.block_number,
                metadata={
                    "rule": self.name,
                    "count": count,
                    "threshold": self.threshold,
                    "window_seconds": window_seconds,
                },
            )
        ]


class LargeTransferRule(AlertRule):
    """Alert on token transfers and native value transfers above a threshold."""

    name = "large_transfer"

    def __init__(
        self, threshold: Decimal, value_threshold_wei: Decimal | None = None
    ) -> None:
        """Initialize the rule.

        Args:
            threshold: Raw token amount above which a transfer alerts
            value_threshold_wei: Native value above which a transaction
                alerts; None disables the native check
        """
        self.threshold = threshold
        self.value_threshold_wei = value_threshold_wei

    async def evaluate(
        self, batch: IngestedBatch, context: EvaluationContext
    ) -> list[AlertDraft]:
        drafts: list[AlertDraft] = []

        for transfer in batch.transfers:
            if transfer.amount is None or transfer.amount <= self.threshold:
                continue
            drafts.append(
                AlertDraft(
                    alert_type=AlertType.LARGE_TRANSFER,
                    severity=Severity.WARNING,
                    title=f"Large {transfer.token_type.value} transfer",
                    message=(
                        f"{transfer.amount} units of {transfer.token_address} from "
                        f"{transfer.from_address} to {transfer.to_address} "
                        f"in {transfer.tx_hash}"
                    ),
                    tx_hash=transfer.tx_hash,
                    block_number=transfer.block_number,
                    address=transfer.token_address,
                    metadata={
                        "rule": self.name,
                        "log_index": transfer.log_index,
                        "amount": str(transfer.amount),
                        "threshold": str(self.threshold),
                    },
                )
            )

        if self.value_threshold_wei is None:
            return drafts

        for tx in batch.transactions:
            if tx.value <= self.value_threshold_wei:
                continue
            drafts.append(
                AlertDraft(
                    alert_type=AlertType.LARGE_VALUE,
                    severity=Severity.WARNING,
                    title="Large native value transfer",
                    message=(
                        f"{wei_to_eth(tx.value)} sent from {tx.from_address} to "
                        f"{tx.to_address or 'contract creation'} in {tx.tx_hash}"
                    ),
                    tx_hash=tx.tx_hash,
                    block_number=tx.block_number,
                    address=tx.from_address,
                    metadata={
                        "rule": self.name,
                        "value_wei": str(tx.value),
                        "threshold_wei": str(self.value_threshold_wei),
                    },
                )
            )
        return drafts


__all__ = [
    "AlertRule",
    "EvaluationContext",
    "FailedTransactionFrequencyRule",
    "LargeTransferRule",
    "WatchedAddressRule",
]
