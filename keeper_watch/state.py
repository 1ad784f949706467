"""In-memory liveness records for tracked keeper jobs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

SYSTEM_ADDRESS = "0x" + "0" * 40
"""Reserved pseudo-address used for system notices; never a tracked job."""


def normalize_address(address: str) -> str:
    """Return the canonical lower-cased form of ``address``."""

    if not isinstance(address, str):
        raise ValueError("address must be a string")
    text = address.strip().lower()
    if not text.startswith("0x") or len(text) != 42:
        raise ValueError(f"address must be a 0x-prefixed 20-byte value: {address!r}")
    try:
        int(text[2:], 16)
    except ValueError as exc:
        raise ValueError(f"address is not hexadecimal: {address!r}") from exc
    return text


@dataclass(slots=True)
class JobLivenessRecord:
    """Reconciliation state for a single job."""

    address: str
    last_worked_block: int
    last_checked_block: int
    consecutive_unworked_blocks: int
    last_update_time: float

    def __post_init__(self) -> None:
        self.address = normalize_address(self.address)
        if self.consecutive_unworked_blocks < 0:
            raise ValueError("consecutive_unworked_blocks cannot be negative")
        if self.last_checked_block < self.last_worked_block:
            raise ValueError("last_checked_block must not precede last_worked_block")

    def as_log_dict(self) -> Dict[str, int | str]:
        return {
            "address": self.address,
            "lastWorkedBlock": self.last_worked_block,
            "lastCheckedBlock": self.last_checked_block,
            "consecutiveUnworkedBlocks": self.consecutive_unworked_blocks,
        }


class JobStateStore:
    """Address keyed store of :class:`JobLivenessRecord` objects.

    The store has a single writer: the active tick. Iteration follows insertion
    order, which is the order the registry enumerated the jobs in.
    """

    def __init__(self) -> None:
        self._records: Dict[str, JobLivenessRecord] = {}

    def get(self, address: str) -> Optional[JobLivenessRecord]:
        return self._records.get(normalize_address(address))

    def upsert(self, record: JobLivenessRecord) -> None:
        if record.address == SYSTEM_ADDRESS:
            raise ValueError("the system pseudo-address cannot be tracked")
        current = self._records.get(record.address)
        if current is not None and record.last_checked_block < current.last_checked_block:
            raise ValueError(
                f"last_checked_block for {record.address} cannot move backwards "
                f"({current.last_checked_block} -> {record.last_checked_block})"
            )
        self._records[record.address] = record

    def delete(self, address: str) -> bool:
        return self._records.pop(normalize_address(address), None) is not None

    def values(self) -> List[JobLivenessRecord]:
        return list(self._records.values())

    def addresses(self) -> List[str]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, address: object) -> bool:
        if not isinstance(address, str):
            return False
        try:
            return normalize_address(address) in self._records
        except ValueError:
            return False

    def __iter__(self) -> Iterator[JobLivenessRecord]:
        return iter(self.values())


__all__ = ["JobLivenessRecord", "JobStateStore", "SYSTEM_ADDRESS", "normalize_address"]
