"""
Transaction index shared by the transaction pattern detectors.

Built once per analysis call from an immutable snapshot of transactions:
- source entity -> outgoing transactions
- destination entity -> incoming transactions

Both maps hold tuples sorted by (timestamp, id).
"""

import logging
from bisect import bisect_right
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from amlscope.fincrime.models import Transaction, coerce_transaction

logger = logging.getLogger(__name__)


def _sort_key(txn: Transaction) -> tuple[datetime, str]:
    return (txn.timestamp, txn.id)


@dataclass(frozen=True)
class TransactionIndex:
    """Read-only adjacency maps over a transaction snapshot."""

    transactions: tuple[Transaction, ...]
    by_source: dict[str, tuple[Transaction, ...]]
    by_destination: dict[str, tuple[Transaction, ...]]
    skipped: int = 0
    _source_times: dict[str, tuple[datetime, ...]] = field(
        default_factory=dict, repr=False, compare=False
    )

    @classmethod
    def build(cls, records: Iterable[Any]) -> "TransactionIndex":
        """
        Build the index from transaction records.

        Records that cannot be coerced (missing id, endpoints, amount or
        timestamp) are skipped, as are repeated ids after the first.

        Args:
            records: Transaction dataclasses or mappings

        Returns:
            TransactionIndex
        """
        seen: dict[str, Transaction] = {}
        skipped = 0

        for raw in records:
            txn = coerce_transaction(raw)
            if txn is None:
                skipped += 1
                logger.debug("Skipping malformed transaction record: %r", raw)
                continue
            if txn.id in seen:
                skipped += 1
                logger.debug("Skipping duplicate transaction id %s", txn.id)
                continue
            seen[txn.id] = txn

        transactions = tuple(sorted(seen.values(), key=_sort_key))

        by_source: dict[str, list[Transaction]] = defaultdict(list)
        by_destination: dict[str, list[Transaction]] = defaultdict(list)
        for txn in transactions:
            by_source[txn.source_entity_id].append(txn)
            by_destination[txn.destination_entity_id].append(txn)

        if skipped:
            logger.info("Excluded %d transaction records from analysis", skipped)

        return cls(
            transactions=transactions,
            by_source={k: tuple(v) for k, v in by_source.items()},
            by_destination={k: tuple(v) for k, v in by_destination.items()},
            skipped=skipped,
            _source_times={
                k: tuple(t.timestamp for t in v) for k, v in by_source.items()
            },
        )

    def __len__(self) -> int:
        return len(self.transactions)

    @property
    def source_entity_ids(self) -> list[str]:
        return list(self.by_source)

    @property
    def entity_ids(self) -> set[str]:
        return set(self.by_source) | set(self.by_destination)

    def outgoing(self, entity_id: str) -> tuple[Transaction, ...]:
        return self.by_source.get(entity_id, ())

    def incoming(self, entity_id: str) -> tuple[Transaction, ...]:
        return self.by_destination.get(entity_id, ())

    def outgoing_after(self, entity_id: str, instant: datetime) -> tuple[Transaction, ...]:
        """Outgoing transactions strictly later than instant."""
        outgoing = self.by_source.get(entity_id, ())
        if not outgoing:
            return ()
        position = bisect_right(self._source_times[entity_id], instant)
        return outgoing[position:]
