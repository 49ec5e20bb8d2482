import sys
import pytest
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from unittest.mock import patch


# Ensure the project root (containing the block_index and services packages) is importable.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from services.blocks import BlockFinder, BlockIndexStore, BlockSample, RetryOptions  # noqa: E402


def utc_ts(value: str) -> int:
    """Unix timestamp for an ISO-8601 UTC string."""
    return int(datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc).timestamp())


# Block 50,000,000 is mined exactly at 2024-01-15T00:00:00Z
ANCHOR_BLOCK = 50_000_000
ANCHOR_TIMESTAMP = utc_ts("2024-01-15T00:00:00Z")
CHAIN_HEAD = 50_200_000


class FakeChain:
    """In-memory chain with linearly increasing block timestamps.

    ``timestamp(n) = anchor_ts + (n - anchor_block) * seconds_num // seconds_den``
    """

    def __init__(
        self,
        head: int = CHAIN_HEAD,
        anchor_block: int = ANCHOR_BLOCK,
        anchor_timestamp: int = ANCHOR_TIMESTAMP,
        seconds_num: int = 2,
        seconds_den: int = 1,
        chain_id: int = 42170,
    ):
        self.head = head
        self.anchor_block = anchor_block
        self.anchor_timestamp = anchor_timestamp
        self.seconds_num = seconds_num
        self.seconds_den = seconds_den
        self.chain_id = chain_id

        self.requested_blocks: List[int] = []
        self.block_number_calls = 0
        self.network_calls = 0

    def timestamp(self, number: int) -> int:
        return self.anchor_timestamp + (number - self.anchor_block) * self.seconds_num // self.seconds_den

    def end_of_day_block(self, next_midnight: int) -> int:
        """Brute-force reference: last block with timestamp < next_midnight."""
        low, high = 0, self.head
        while low < high:
            mid = (low + high + 1) // 2
            if self.timestamp(mid) < next_midnight:
                low = mid
            else:
                high = mid - 1
        return low

    @property
    def rpc_calls(self) -> int:
        return len(self.requested_blocks) + self.block_number_calls + self.network_calls

    async def get_block_number(self) -> int:
        self.block_number_calls += 1
        return self.head

    async def get_block(self, number: int) -> Optional[BlockSample]:
        self.requested_blocks.append(number)
        if number < 0 or number > self.head:
            return None
        return BlockSample(number=number, timestamp=self.timestamp(number))

    async def get_network(self) -> int:
        self.network_calls += 1
        return self.chain_id


@pytest.fixture
def fake_chain():
    return FakeChain()


@pytest.fixture
def fast_retry():
    """Retry options without real delays"""
    return RetryOptions(max_retries=3, initial_delay=0, rate_limit_delay=0)


@pytest.fixture
def block_store(tmp_path):
    return BlockIndexStore(tmp_path / "store")


@pytest.fixture
def block_finder(fake_chain, block_store, fast_retry):
    return BlockFinder(fake_chain, block_store, retry_options=fast_retry)


@pytest.fixture
def temp_log_dir(tmp_path):
    """Create temporary log directory for tests"""
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    return log_dir


@pytest.fixture
def mock_settings(temp_log_dir):
    """Mock settings for tests"""
    with patch('block_index.common.logging_setup.settings') as mock_settings:
        mock_settings.rpc_url = "http://localhost:8545"
        mock_settings.store_dir = str(temp_log_dir.parent / "store")
        mock_settings.log_level = "INFO"
        mock_settings.log_dir = str(temp_log_dir)
        mock_settings.http_timeout = 30
        mock_settings.max_retries = 3
        yield mock_settings
