"""Poll loop - historical backfill followed by steady-state polling."""

import time
from enum import Enum
from typing import Callable, Optional

from escrow_indexer.config import Config
from escrow_indexer.db.session import get_session
from escrow_indexer.log import get_logger
from escrow_indexer.pipeline.block_processor import BatchResult, BlockRangeProcessor
from escrow_indexer.services.aggregator import AggregationEngine
from escrow_indexer.services.checkpoint import get_checkpoint, set_checkpoint

logger = get_logger(__name__)


class Phase(str, Enum):
    """Indexer phases."""

    BACKFILLING = "backfilling"
    POLLING = "polling"


class Indexer:
    """Drives the pipeline as a two-phase state machine.

    BACKFILLING walks from the checkpoint (or the lookback window) to the chain
    head in fixed-size batches; POLLING processes everything above the
    checkpoint once per interval. The checkpoint is written only after a range
    has been stored and aggregated.
    """

    def __init__(
        self,
        config: Config,
        client,
        processor: Optional[BlockRangeProcessor] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize indexer.

        Args:
            config: Configuration object
            client: Chain client
            processor: Block range processor (built from client if omitted)
            sleep: Sleep primitive for throttling and poll intervals
            clock: Monotonic clock used for timing batches
        """
        self.config = config
        self.client = client
        self.processor = processor or BlockRangeProcessor(config, client, AggregationEngine(client))
        self.sleep = sleep
        self.clock = clock
        self.phase = Phase.BACKFILLING
        self._shutdown = False

    def stop(self) -> None:
        """Ask the loop to stop after the current batch."""
        self._shutdown = True

    @property
    def stopped(self) -> bool:
        return self._shutdown

    def read_checkpoint(self) -> Optional[int]:
        with get_session() as session:
            return get_checkpoint(session)

    def _start_block(self, height: int) -> int:
        checkpoint = self.read_checkpoint()
        if checkpoint is None:
            return max(height - self.config.lookback_blocks, 0)
        return checkpoint + 1

    def process_range(self, from_block: int, to_block: int) -> BatchResult:
        """Process one range and advance the checkpoint to its end.

        Args:
            from_block: Starting block number
            to_block: Ending block number (inclusive)

        Returns:
            BatchResult of the range
        """
        started = self.clock()
        result = self.processor.process(from_block, to_block)

        with get_session() as session:
            set_checkpoint(session, to_block)

        logger.info(f"Checkpoint advanced to {to_block} ({self.clock() - started:.2f}s)")
        return result

    def backfill(self) -> int:
        """Catch up from the checkpoint to the current chain head.

        Returns:
            Chain height the backfill ran up to
        """
        height = self.client.get_current_height()
        start = self._start_block(height)

        if start > height:
            logger.info("Indexer: already up to date")
            return height

        logger.info(f"Indexer: syncing {height - start + 1} blocks ({start} -> {height})")

        batch_size = self.config.block_batch_size
        for from_block in range(start, height + 1, batch_size):
            if from_block > start:
                # Throttle between batches to stay within provider rate limits
                self.sleep(self.config.batch_delay_seconds)
            if self._shutdown:
                break
            to_block = min(from_block + batch_size - 1, height)
            self.process_range(from_block, to_block)

        return height

    def poll_once(self) -> Optional[BatchResult]:
        """Process all blocks above the checkpoint as a single range.

        Returns:
            BatchResult, or None when there are no new blocks
        """
        height = self.client.get_current_height()
        start = self._start_block(height)

        if start > height:
            logger.debug(f"No new blocks (latest={height}, next={start})")
            return None

        logger.info(f"New blocks detected: {start} to {height}")
        return self.process_range(start, height)

    def step(self) -> None:
        """Run one transition of the state machine."""
        if self.phase is Phase.BACKFILLING:
            self.backfill()
            if not self._shutdown:
                logger.info("Indexer: historical sync complete, starting poll loop")
                self.phase = Phase.POLLING
        else:
            self.poll_once()

    def run(self, max_steps: Optional[int] = None) -> None:
        """Run until stopped.

        Errors are logged and the failed phase is retried after one poll
        interval; the checkpoint guarantees no range is skipped.

        Args:
            max_steps: Stop after this many steps (unbounded if None)
        """
        logger.info(f"Starting indexer for factory {self.config.factory_address}")
        steps = 0

        while not self._shutdown:
            try:
                self.step()
            except Exception as e:
                logger.error(f"Indexer {self.phase.value} error: {e}", exc_info=True)

            steps += 1
            if max_steps is not None and steps >= max_steps:
                break
            if not self._shutdown:
                self.sleep(self.config.poll_interval_seconds)

        logger.info("Indexer stopped")

    def reindex_range(self, from_block: int, to_block: int) -> int:
        """Re-process an explicit block range without moving the checkpoint.

        Args:
            from_block: Starting block number
            to_block: Ending block number (inclusive)

        Returns:
            Number of newly stored events
        """
        inserted = 0
        batch_size = self.config.block_batch_size
        for start in range(from_block, to_block + 1, batch_size):
            if start > from_block:
                self.sleep(self.config.batch_delay_seconds)
            if self._shutdown:
                break
            end = min(start + batch_size - 1, to_block)
            inserted += self.processor.process(start, end).inserted
        return inserted
