"""Block cursor: decides the next height to ingest and resolves reorgs."""

from __future__ import annotations

import asyncio

from enum import StrEnum
from typing import TYPE_CHECKING

from mantle_indexer.helpers.errors import ReorgDepthExceededError, is_transient
from mantle_indexer.helpers.http import backoff_delay
from mantle_indexer.helpers.logging import get_logger
from mantle_indexer.ingestion.normalizer import normalize_block


if TYPE_CHECKING:
    from mantle_indexer.alerts.evaluator import AlertEvaluator
    from mantle_indexer.data.state.store import StateStore
    from mantle_indexer.helpers.config import IndexerConfig
    from mantle_indexer.ingestion.source import BlockSource
    from mantle_indexer.ingestion.writer import IngestionWriter


logger = get_logger(__name__)

LAG_LOG_EVERY = 100
"""Blocks between progress lines while catching up"""


class StepResult(StrEnum):
    """Outcome of one cursor step."""

    ADVANCED = "advanced"
    CAUGHT_UP = "caught_up"
    REORG = "reorg"
    SOURCE_INCONSISTENT = "source_inconsistent"


class BlockCursor:
    """Walks the chain one block at a time.

    ``tip`` is the last height reflected in the store. Each step fetches
    ``tip + 1`` and checks its parent hash against the stored block at
    ``tip``; a mismatch (or a pushed hint) triggers a bounded backward walk
    to the common ancestor, followed by an atomic rollback to it.

    Example:
        ```python
        cursor = BlockCursor(source, writer, state, config, evaluator)
        await cursor.start()
        await cursor.run(stop_event)
        ```
    """

    def __init__(
        self,
        source: BlockSource,
        writer: IngestionWriter,
        state: StateStore,
        config: IndexerConfig,
        evaluator: AlertEvaluator | None = None,
    ) -> None:
        """Initialize the cursor.

        Args:
            source: Upstream chain data
            writer: Owner of entity writes and rollbacks
            state: Persisted tip
            config: Poll interval, reorg depth and start block
            evaluator: Receives every non-empty ingested batch
        """
        self.source = source
        self.writer = writer
        self.state = state
        self.config = config
        self.evaluator = evaluator

        self.tip = 0
        self.head: int | None = None
        self._reorg_hint: int | None = None

    @property
    def lag(self) -> int | None:
        """Source head minus tip, once the head is known."""
        if self.head is None:
            return None
        return max(self.head - self.tip, 0)

    async def start(self) -> int:
        """Load the tip from the store.

        On a fresh store the cursor is positioned just below ``START_BLOCK``.

        Returns:
            The tip the cursor resumes from
        """
        self.tip = await self.state.get_tip()
        if self.tip == 0 and self.config.start_block > 0:
            self.tip = self.config.start_block - 1
            logger.info("Fresh store, starting at block %s", self.config.start_block)
        else:
            logger.info("Resuming after block %s", self.tip)
        await self.refresh_head()
        return self.tip

    def notify_reorg(self, height: int) -> None:
        """Hint that the source's canonical block at ``height`` may have changed.

        The hint is checked on the next step; the parent-hash comparison
        stays authoritative.
        """
        if self._reorg_hint is None or height < self._reorg_hint:
            self._reorg_hint = height

    async def find_common_ancestor(self) -> int:
        """Walk back from the tip until stored and canonical hashes agree.

        A height with no stored block counts as an ancestor.

        Returns:
            The highest height whose stored block is canonical

        Raises:
            ReorgDepthExceededError: If none is found within ``max_reorg_depth``
        """
        lowest = max(self.tip - self.config.max_reorg_depth, 0)
        for height in range(self.tip, lowest - 1, -1):
            stored = await self.writer.get_block_hash(height)
            if stored is None:
                return height
            canonical = await self.source.get_block_hash(height)
            if canonical is not None and canonical.lower() == stored:
                return height
        raise ReorgDepthExceededError(self.tip, self.config.max_reorg_depth)

    async def _resolve_reorg(self) -> StepResult:
        ancestor = await self.find_common_ancestor()
        if ancestor == self.tip:
            return StepResult.SOURCE_INCONSISTENT

        logger.warning(
            "Reorg detected: rolling back from %s to common ancestor %s",
            self.tip,
            ancestor,
        )
        if self.evaluator is not None:
            await self.evaluator.drain()
        await self.writer.rollback_to(ancestor)
        self.tip = ancestor
        return StepResult.REORG

    async def _check_hint(self) -> StepResult | None:
        hint, self._reorg_hint = self._reorg_hint, None
        if hint is None or hint > self.tip:
            return None
        stored = await self.writer.get_block_hash(hint)
        canonical = await self.source.get_block_hash(hint)
        if stored is None or canonical is None or canonical.lower() == stored:
            return None
        logger.info("Reorg hint confirmed at block %s", hint)
        return await self._resolve_reorg()

    async def step(self) -> StepResult:
        """Ingest the next block, or resolve a reorg.

        Returns:
            What happened
        """
        hinted = await self._check_hint()
        if hinted is not None:
            return hinted

        height = self.tip + 1
        fetched = await self.source.get_block(height)
        if fetched is None:
            return StepResult.CAUGHT_UP

        if self.tip > 0:
            stored = await self.writer.get_block_hash(self.tip)
            if stored is not None and fetched.parent_hash != stored:
                logger.warning(
                    "Block %s parent %s does not match stored %s at %s",
                    height,
                    fetched.parent_hash,
                    stored,
                    self.tip,
                )
                return await self._resolve_reorg()

        batch = await self.writer.ingest(normalize_block(fetched))
        self.tip = height

        if self.evaluator is not None and not batch.is_empty:
            self.evaluator.submit(batch)
        return StepResult.ADVANCED

    async def refresh_head(self) -> int:
        """Ask the source for its head."""
        self.head = await self.source.get_head_number()
        return self.head

    async def _sleep(self, stop_event: asyncio.Event, seconds: float) -> None:
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def run(self, stop_event: asyncio.Event) -> None:
        """Step until ``stop_event`` is set.

        Transient failures back off exponentially and retry the same height.
        Anything else (reorg too deep, store rejects data) propagates.

        Args:
            stop_event: Set to stop after the in-flight block
        """
        failures = 0
        advanced = 0
        while not stop_event.is_set():
            try:
                result = await self.step()
            except Exception as e:
                if not is_transient(e):
                    raise
                delay = backoff_delay(failures)
                failures += 1
                logger.warning(
                    "Transient failure at block %s (attempt %d), retrying in %.1fs: %s",
                    self.tip + 1,
                    failures,
                    delay,
                    e,
                )
                await self._sleep(stop_event, delay)
                continue

            failures = 0
            if result == StepResult.ADVANCED:
                advanced += 1
                if self.head is None or self.tip > self.head:
                    self.head = self.tip
                if advanced % LAG_LOG_EVERY == 0:
                    logger.info("Indexed block %s (lag %s)", self.tip, self.lag)
            elif result == StepResult.CAUGHT_UP:
                try:
                    await self.refresh_head()
                except Exception as e:
                    if not is_transient(e):
                        raise
                    logger.warning("Could not refresh head: %s", e)
                logger.debug("Caught up at block %s (lag %s)", self.tip, self.lag)
                await self._sleep(stop_event, self.config.poll_interval)
            elif result == StepResult.SOURCE_INCONSISTENT:
                logger.warning(
                    "Source disagrees with itself around block %s; backing off",
                    self.tip,
                )
                await self._sleep(stop_event, self.config.poll_interval)


__all__ = ["BlockCursor", "StepResult"]
