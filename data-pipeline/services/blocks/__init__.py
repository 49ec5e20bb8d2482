"""End-of-day block resolution services.

This module resolves, for each UTC calendar date, the last block mined before
the next midnight, using a JSON-RPC node as the only source of truth and a
JSON index so each date is resolved once.
"""

from .errors import (
    ErrorKind,
    BlockFinderError,
    DateRangeValidationError,
    SearchBoundsError,
    StoreValidationError,
    RpcFailureError,
    SearchInvariantError,
)
from .retry import RetryOptions, with_retry, call_rpc
from .chain_client import BlockSample, ChainClient, ChainRpcError, JsonRpcChainClient
from .dates import DateRange
from .storage import BlockIndex, BlockIndexStore
from .end_of_day_search import BlockTimestampOracle, find_end_of_day_block
from .block_finder import (
    FINALITY_BLOCKS,
    BlockFinder,
    SearchWindow,
    get_search_bounds,
)

__all__ = [
    # Errors
    'ErrorKind',
    'BlockFinderError',
    'DateRangeValidationError',
    'SearchBoundsError',
    'StoreValidationError',
    'RpcFailureError',
    'SearchInvariantError',

    # RPC
    'RetryOptions',
    'with_retry',
    'call_rpc',
    'BlockSample',
    'ChainClient',
    'ChainRpcError',
    'JsonRpcChainClient',

    # Index
    'DateRange',
    'BlockIndex',
    'BlockIndexStore',

    # Resolution
    'FINALITY_BLOCKS',
    'BlockFinder',
    'BlockTimestampOracle',
    'SearchWindow',
    'find_end_of_day_block',
    'get_search_bounds',
]
