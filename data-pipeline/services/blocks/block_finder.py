"""Date-range driver for end-of-day block resolution.

Resolves the last block before each UTC midnight in a date range, one date at
a time, reusing the previous date's block as the next lower bound and
persisting the whole index after every resolved date.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog

from .chain_client import ChainClient
from .dates import (
    DateLike,
    DateRange,
    format_date,
    format_timestamp,
    next_midnight_timestamp,
    to_utc_day,
)
from .end_of_day_search import BlockTimestampOracle, find_end_of_day_block
from .errors import (
    BlockFinderError,
    DateRangeValidationError,
    RpcFailureError,
    SearchInvariantError,
)
from .retry import RetryOptions, call_rpc
from .storage import BlockIndex, BlockIndexStore

logger = structlog.get_logger()

# Blocks this far behind the head are treated as final
FINALITY_BLOCKS = 1000
MINIMUM_VALID_BLOCK = 1
DEFAULT_CHAIN_ID = 42161


@dataclass(frozen=True)
class SearchWindow:
    lower: int
    upper: int


def get_search_bounds(day: DateLike, known_blocks: BlockIndex, safe_head: int) -> SearchWindow:
    """Search window for one date.

    The lower bound is the block recorded for the latest earlier date (or 1
    when there is none). The upper bound is always the safe head, since the
    first block of the chain's history is not known up front.
    """
    lower = known_blocks.latest_before(format_date(day))
    if lower is None:
        lower = MINIMUM_VALID_BLOCK
    return SearchWindow(lower=max(MINIMUM_VALID_BLOCK, lower), upper=safe_head)


class BlockFinder:
    """Resolves and persists end-of-day block numbers for date ranges."""

    def __init__(
        self,
        client: ChainClient,
        store: BlockIndexStore,
        retry_options: Optional[RetryOptions] = None,
        default_chain_id: int = DEFAULT_CHAIN_ID,
    ):
        """Initialize block finder.

        Args:
            client: Chain client used for every RPC call
            store: Persistence for the block index
            retry_options: Base retry settings applied at each RPC call site
            default_chain_id: Chain id reported for an empty index when no
                RPC call is made
        """
        self.client = client
        self.store = store
        self.retry_options = retry_options or RetryOptions()
        self.default_chain_id = default_chain_id
        self.oracle = BlockTimestampOracle(client, self.retry_options)

        self.logger = logger.bind(component="block_finder")

    async def get_safe_current_block(self) -> int:
        """Chain height minus the finality cushion.

        Raises:
            RpcFailureError: If the chain height cannot be read after retries
        """
        try:
            height = await call_rpc(
                self.client.get_block_number,
                self.retry_options.named("getBlockNumber"),
            )
        except RpcFailureError as e:
            raise RpcFailureError(
                "Failed to get current block",
                operation="getSafeCurrentBlock",
                context={"RPC operation": "getBlockNumber", "Retries": self.retry_options.max_retries},
                hint="Ensure the RPC endpoint is reachable",
                cause=e,
            ) from e

        return height - FINALITY_BLOCKS

    async def find_end_of_day_block(
        self,
        day: DateLike,
        lower: int,
        upper: int,
        known_blocks: Optional[BlockIndex] = None,
    ) -> int:
        """See ``end_of_day_search.find_end_of_day_block``."""
        return await find_end_of_day_block(self.oracle, day, lower, upper, known_blocks)

    async def find_blocks_for_date_range(self, start: DateLike, end: DateLike) -> BlockIndex:
        """Resolve end-of-day blocks for every date from ``start`` to ``end``.

        Dates already in the stored index are skipped, dates whose next
        midnight is later than the safe head are deferred (left out of the
        result), and every newly resolved date is written to the store before
        the next one is attempted.

        Args:
            start: First date (inclusive)
            end: Last date (inclusive)

        Returns:
            The accumulated index, including previously stored dates

        Raises:
            DateRangeValidationError: If either bound is not a date or start > end
            BlockFinderError: On the first date that cannot be resolved
        """
        start_day, end_day = self._validate_date_range(start, end)
        stored = self.store.read()

        if start_day == end_day:
            return stored.copy() if stored else BlockIndex(chain_id=self.default_chain_id)

        started = time.monotonic()
        safe_head = await self.get_safe_current_block()
        result = await self._initialize_result(stored)

        log = self.logger.bind(
            start_date=format_date(start_day),
            end_date=format_date(end_day),
            safe_head=safe_head,
        )
        log.info("resolving_date_range", known_dates=len(result.blocks))

        safe_head_timestamp: Optional[int] = None
        resolved = skipped = deferred = 0

        for day in DateRange(start_day, end_day):
            date_str = format_date(day)

            if date_str in result.blocks:
                skipped += 1
                log.debug("date_skipped", date=date_str, block_number=result.blocks[date_str])
                continue

            if safe_head_timestamp is None:
                safe_head_timestamp = await self._safe_head_timestamp(safe_head)

            if next_midnight_timestamp(day) > safe_head_timestamp:
                deferred += 1
                log.info(
                    "date_deferred",
                    date=date_str,
                    safe_head_time=format_timestamp(safe_head_timestamp),
                )
                continue

            await self._resolve_date(day, result, safe_head)
            resolved += 1

        log.info(
            "date_range_resolved",
            resolved=resolved,
            skipped=skipped,
            deferred=deferred,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return result

    def _validate_date_range(self, start: DateLike, end: DateLike):
        start_day = to_utc_day(start)
        end_day = to_utc_day(end)

        if start_day > end_day:
            raise DateRangeValidationError(
                "Start date must not be after end date",
                operation="findBlocksForDateRange",
                context={"Start date": format_date(start_day), "End date": format_date(end_day)},
                hint="Swap the dates or pass a non-empty range",
            )
        return start_day, end_day

    async def _initialize_result(self, stored: Optional[BlockIndex]) -> BlockIndex:
        # Stored chain id wins once the index has data
        if stored is not None and stored.blocks:
            return stored.copy()

        chain_id = await call_rpc(self.client.get_network, self.retry_options.named("getNetwork"))
        return BlockIndex(chain_id=chain_id)

    async def _safe_head_timestamp(self, safe_head: int) -> int:
        sample = await self.oracle.get_block(safe_head, {"Safe head": safe_head})
        return sample.timestamp

    async def _resolve_date(self, day: datetime, result: BlockIndex, safe_head: int) -> None:
        date_str = format_date(day)
        window = get_search_bounds(day, result, safe_head)

        try:
            block_number = await self.find_end_of_day_block(
                day, window.lower, window.upper, result
            )
        except BlockFinderError:
            raise
        except Exception as e:
            raise RpcFailureError(
                f"Failed to find block for {date_str}",
                operation="findBlocksForDateRange",
                context={"Date": date_str, "Search bounds": f"{window.lower} to {window.upper}"},
                hint="Inspect the underlying error, then re-run the same range to resume",
                cause=e,
            ) from e

        if block_number < window.lower:
            raise SearchInvariantError(
                f"Unable to find block before midnight for {date_str}",
                operation="findBlocksForDateRange",
                context={"Date": date_str, "Search bounds": f"{window.lower} to {window.upper}"},
                hint="Move the search window earlier",
            )

        result.blocks[date_str] = block_number
        self.store.write(result)

        self.logger.info(
            "date_resolved",
            date=date_str,
            block_number=block_number,
            lower=window.lower,
            upper=window.upper,
        )
