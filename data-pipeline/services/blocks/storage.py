"""JSON persistence for the date -> end-of-day block index.

On-disk shape (``<store_dir>/block_numbers.json``)::

    {
      "metadata": {"chain_id": 42161},
      "blocks": {"2024-01-15": 170950000}
    }
"""

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Set, Union

import structlog

from .dates import DATE_FORMAT_REGEX
from .errors import StoreValidationError

logger = structlog.get_logger()

BLOCK_NUMBERS_FILE = "block_numbers.json"
JSON_INDENT_SIZE = 2


@dataclass
class BlockIndex:
    """Resolved end-of-day block numbers keyed by ``YYYY-MM-DD``."""

    chain_id: int
    blocks: Dict[str, int] = field(default_factory=dict)

    def copy(self) -> "BlockIndex":
        return BlockIndex(chain_id=self.chain_id, blocks=dict(self.blocks))

    def known_blocks(self) -> Set[int]:
        return set(self.blocks.values())

    def latest_before(self, date_str: str) -> Optional[int]:
        """Block recorded for the most recent date strictly before ``date_str``.

        Keys are zero-padded, so string order is date order.
        """
        earlier = [d for d in self.blocks if d < date_str]
        if not earlier:
            return None
        return self.blocks[max(earlier)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": {"chain_id": self.chain_id},
            "blocks": dict(sorted(self.blocks.items())),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlockIndex":
        metadata = data.get("metadata") or {}
        return cls(
            chain_id=metadata.get("chain_id"),
            blocks=dict(data.get("blocks") or {}),
        )


def validate_date_format(date_str: Any) -> None:
    if not isinstance(date_str, str) or not DATE_FORMAT_REGEX.match(date_str):
        raise StoreValidationError(
            f"Invalid date format: {date_str}. Expected YYYY-MM-DD",
            operation="validateDateFormat",
            context={"Value": repr(date_str)},
            hint="Dates are zero-padded UTC calendar dates",
        )


def validate_block_number(block_number: Any, date_str: str = "") -> None:
    # bool is an int subclass
    if isinstance(block_number, bool) or not isinstance(block_number, int) or block_number <= 0:
        context = {"Value": repr(block_number)}
        if date_str:
            context["Date"] = date_str
        raise StoreValidationError(
            f"Block number must be a positive integer, got: {block_number}",
            operation="validateBlockNumber",
            context=context,
            hint="Only resolved end-of-day blocks belong in the index",
        )


def validate_layout(data: Any, path: str) -> None:
    """Top level, ``metadata`` and ``blocks`` must all be JSON objects."""
    if isinstance(data, dict):
        metadata = data.get("metadata") or {}
        blocks = data.get("blocks") or {}
        if isinstance(metadata, dict) and isinstance(blocks, dict):
            return

    raise StoreValidationError(
        "Block index file has an unexpected layout",
        operation="readBlockNumbers",
        context={"Path": path, "Expected": '{"metadata": {...}, "blocks": {...}}'},
        hint="Restore the file from a backup or delete it to rebuild the index",
    )


def validate_block_index(index: BlockIndex) -> None:
    if isinstance(index.chain_id, bool) or not isinstance(index.chain_id, int) or index.chain_id <= 0:
        raise StoreValidationError(
            f"Chain id must be a positive integer, got: {index.chain_id}",
            operation="validateBlockIndex",
            hint="Record the chain id of the RPC endpoint the index was built from",
        )
    for date_str, block_number in index.blocks.items():
        validate_date_format(date_str)
        validate_block_number(block_number, date_str)


class BlockIndexStore:
    """Reads and writes the block index as a single JSON file."""

    def __init__(self, store_dir: Union[str, Path] = "store"):
        self.store_dir = Path(store_dir)
        self.path = self.store_dir / BLOCK_NUMBERS_FILE
        self.logger = logger.bind(component="block_index_store", path=str(self.path))

    def read(self) -> Optional[BlockIndex]:
        """Load the stored index, or None when nothing has been written yet."""
        if not self.path.exists():
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StoreValidationError(
                "Block index file is not valid JSON",
                operation="readBlockNumbers",
                context={"Path": str(self.path)},
                hint="Restore the file from a backup or delete it to rebuild the index",
                cause=e,
            ) from e

        validate_layout(data, str(self.path))
        index = BlockIndex.from_dict(data)
        validate_block_index(index)
        self.logger.debug("block_index_loaded", entries=len(index.blocks))
        return index

    def write(self, index: BlockIndex) -> None:
        """Validate and atomically replace the stored index."""
        validate_block_index(index)
        os.makedirs(self.store_dir, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.store_dir), prefix=".block_numbers.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(index.to_dict(), f, indent=JSON_INDENT_SIZE)
                f.write("\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        self.logger.debug("block_index_saved", entries=len(index.blocks))
