"""End-of-day block search.

Finds the last block mined strictly before the next UTC midnight of a date by
binary search over block numbers, using block timestamps fetched from the
node. Timestamps are monotonic in block number, so the predicate
``timestamp(b) < next_midnight`` is true for a prefix of any window.
"""

from typing import Any, Dict, Optional, Set

import structlog

from .chain_client import BlockSample, ChainClient
from .dates import (
    DateLike,
    format_date,
    format_timestamp,
    midnight_start_timestamp,
    next_midnight_timestamp,
)
from .errors import RpcFailureError, SearchBoundsError, SearchInvariantError
from .retry import RetryOptions, call_rpc
from .storage import BlockIndex

logger = structlog.get_logger()

OPERATION = "findEndOfDayBlock"


class BlockTimestampOracle:
    """Fetches block timestamps through the retry wrapper."""

    def __init__(self, client: ChainClient, retry_options: Optional[RetryOptions] = None):
        self.client = client
        self.retry_options = (retry_options or RetryOptions()).named("getBlock")

    async def get_block(self, number: int, context: Optional[Dict[str, Any]] = None) -> BlockSample:
        """Fetch one block.

        Args:
            number: Block number to fetch
            context: Search state to attach to any error raised

        Raises:
            SearchInvariantError: If the node reports the block as absent
            RpcFailureError: If the call fails after all retries
        """
        error_context = {"Block": number}
        error_context.update(context or {})

        try:
            sample = await call_rpc(lambda: self.client.get_block(number), self.retry_options)
        except RpcFailureError as e:
            raise RpcFailureError(
                f"Failed to fetch block {number}",
                operation=OPERATION,
                context={**error_context, "RPC operation": e.operation, **e.context},
                hint="Ensure the RPC endpoint is reachable; re-run to resume from the last saved date",
                cause=e.cause,
            ) from e

        if sample is None:
            raise SearchInvariantError(
                f"Block {number} not found",
                operation=OPERATION,
                context=error_context,
                hint="The node may not have this block yet; wait for it to sync or lower the upper bound",
            )
        return sample


def _check_upper_bound(
    upper: BlockSample,
    day_start: int,
    target: int,
    context: Dict[str, Any],
) -> None:
    if upper.timestamp < day_start:
        raise SearchInvariantError(
            "All blocks in range are before the target date",
            operation=OPERATION,
            context={
                **context,
                f"Upper block {upper.number} timestamp": format_timestamp(upper.timestamp),
            },
            hint="Extend the upper bound later or wait for more blocks",
        )

    if upper.timestamp < target:
        raise SearchInvariantError(
            "Search bounds do not contain midnight",
            operation=OPERATION,
            context={
                **context,
                f"Upper block {upper.number} timestamp": format_timestamp(upper.timestamp),
                "Target timestamp": target,
            },
            hint="Extend the upper bound later, typically by waiting for more blocks",
        )


async def find_end_of_day_block(
    oracle: BlockTimestampOracle,
    day: DateLike,
    lower: int,
    upper: int,
    known_blocks: Optional[BlockIndex] = None,
) -> int:
    """Return the highest block in ``[lower, upper]`` mined before the next UTC midnight.

    When ``lower`` is already recorded as some date's end-of-day block in
    ``known_blocks`` its timestamp is trusted and it is not fetched again.
    The upper bound is always fetched and validated.

    Returns:
        The block number, or ``lower - 1`` if no block in range qualifies

    Raises:
        SearchBoundsError: If ``lower > upper``
        SearchInvariantError: If the window does not bracket midnight, or a
            block is missing
        RpcFailureError: If a block fetch fails after all retries
    """
    date_str = format_date(day)

    if lower > upper:
        raise SearchBoundsError(
            "Invalid search bounds: lower bound is greater than upper bound",
            operation=OPERATION,
            context={"Date": date_str, "Lower bound": lower, "Upper bound": upper},
            hint="Pass a lower bound that does not exceed the upper bound",
        )

    target = next_midnight_timestamp(day)
    day_start = midnight_start_timestamp(day)
    context = {
        "Date": date_str,
        "Search bounds": f"{lower} to {upper}",
        "Target": f"Before {format_timestamp(target)}",
    }
    known: Set[int] = known_blocks.known_blocks() if known_blocks is not None else set()
    log = logger.bind(component="end_of_day_search", date=date_str, lower=lower, upper=upper)

    upper_sample = await oracle.get_block(upper, context)

    if lower in known:
        _check_upper_bound(upper_sample, day_start, target, context)
        # lower ended an earlier day, so it is before target
        low, best = lower + 1, lower
        log.debug("known_lower_bound_reused")
    else:
        lower_sample = await oracle.get_block(lower, context)
        if lower_sample.timestamp >= target:
            raise SearchInvariantError(
                "All blocks in range are after midnight",
                operation=OPERATION,
                context={
                    **context,
                    f"Lower block {lower} timestamp": format_timestamp(lower_sample.timestamp),
                },
                hint="Move the search window earlier",
            )
        _check_upper_bound(upper_sample, day_start, target, context)
        low, best = lower, None

    high = upper
    last_checked: Optional[BlockSample] = None
    iterations = 0

    while low <= high:
        mid = (low + high) // 2
        iterations += 1

        search_context = {
            "Date": date_str,
            "Search bounds": f"{low} to {high}",
            "Target timestamp": target,
        }
        if last_checked is not None:
            search_context["Last checked block"] = last_checked.number
            search_context["Last checked timestamp"] = last_checked.timestamp

        sample = await oracle.get_block(mid, search_context)
        last_checked = sample

        if sample.timestamp < target:
            best = mid
            low = mid + 1
        else:
            high = mid - 1

    if best is None:
        log.warning("no_block_before_midnight", iterations=iterations)
        return lower - 1

    log.info("end_of_day_block_found", block_number=best, iterations=iterations)
    return best
