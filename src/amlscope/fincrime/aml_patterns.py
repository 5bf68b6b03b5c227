"""
AML (Anti-Money Laundering) transaction pattern detection.

Implements detection for common money laundering typologies:
- Structuring - deposits clustered just below a reporting threshold
- Round-tripping - funds returning to origin through intermediaries
- Layering - chains of near-constant value transfers across entities

Each detector takes a transaction collection (or a prebuilt
TransactionIndex) and returns one DetectedPattern whose transactions are
unique by id. Traversals use explicit stacks bounded by chain length and
time window.
"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Iterator, Optional, Union

from amlscope.config import ConfigurationError, Settings, get_settings
from amlscope.fincrime.index import TransactionIndex
from amlscope.fincrime.models import DetectedPattern, RiskLevel, Transaction

logger = logging.getLogger(__name__)

TransactionSource = Union[TransactionIndex, Iterable[Any]]


def _as_index(transactions: TransactionSource) -> TransactionIndex:
    if isinstance(transactions, TransactionIndex):
        return transactions
    return TransactionIndex.build(transactions)


def _require_decimal(name: str, value: Any) -> Decimal:
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ConfigurationError(f"{name} must be numeric, got {value!r}")
    if not number.is_finite():
        raise ConfigurationError(f"{name} must be finite, got {value!r}")
    return number


def _require_window(name: str, value: Any) -> timedelta:
    if not isinstance(value, timedelta):
        raise ConfigurationError(f"{name} must be a timedelta, got {value!r}")
    if value <= timedelta(0):
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _require_length(name: str, value: Any, minimum: int = 2) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigurationError(f"{name} must be at least {minimum}, got {value}")
    return value


class AMLPattern(ABC):
    """Base class for transaction pattern detectors."""

    risk_level: RiskLevel = RiskLevel.MEDIUM

    @property
    @abstractmethod
    def pattern_type(self) -> str:
        """Unique identifier for this pattern type."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Display name of the finding."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of the pattern."""
        pass

    @abstractmethod
    def detect(self, transactions: TransactionSource) -> DetectedPattern:
        """
        Detect the pattern in a transaction snapshot.

        Args:
            transactions: TransactionIndex, or Transaction dataclasses /
                mappings with id, source_entity_id, destination_entity_id,
                amount and timestamp

        Returns:
            DetectedPattern, empty when nothing was flagged
        """
        pass

    def _build_pattern(
        self,
        index: TransactionIndex,
        flagged: set[str],
        chains: tuple[tuple[str, ...], ...] = (),
        details: Optional[dict[str, Any]] = None,
    ) -> DetectedPattern:
        # index.transactions is sorted by (timestamp, id)
        transactions = tuple(t for t in index.transactions if t.id in flagged)
        return DetectedPattern(
            pattern_type=self.pattern_type,
            name=self.name,
            description=self.description,
            risk_level=self.risk_level,
            transactions=transactions,
            chains=chains,
            details=details or {},
        )


class StructuringDetector(AMLPattern):
    """
    Detect structured deposits.

    Structuring = splitting a large transfer into several deposits that each
    stay just under the reporting threshold. A deposit in the band
    [threshold - buffer, threshold) is flagged when the same destination
    received another in-band deposit within the time window, before or after.
    """

    REPORTING_THRESHOLD = Decimal("10000")
    THRESHOLD_BUFFER = Decimal("1000")
    TIME_WINDOW = timedelta(hours=48)

    risk_level = RiskLevel.HIGH

    @property
    def pattern_type(self) -> str:
        return "structuring"

    @property
    def name(self) -> str:
        return "Structured Deposits"

    @property
    def description(self) -> str:
        hours = self.window.total_seconds() / 3600
        return f"Multiple deposits under reporting threshold within {hours:g} hours"

    def __init__(
        self,
        threshold: Union[Decimal, int, float, str] = REPORTING_THRESHOLD,
        buffer: Union[Decimal, int, float, str] = THRESHOLD_BUFFER,
        window: timedelta = TIME_WINDOW,
    ):
        self.threshold = _require_decimal("threshold", threshold)
        self.buffer = _require_decimal("buffer", buffer)
        self.window = _require_window("window", window)

        if self.threshold <= 0:
            raise ConfigurationError(f"threshold must be positive, got {threshold}")
        if not 0 <= self.buffer < self.threshold:
            raise ConfigurationError(
                f"buffer must be in [0, threshold), got {buffer} for threshold {threshold}"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StructuringDetector":
        return cls(
            threshold=settings.structuring_threshold,
            buffer=settings.structuring_buffer,
            window=timedelta(hours=settings.structuring_window_hours),
        )

    def is_in_band(self, amount: Decimal) -> bool:
        """Check if amount is in the band just below the threshold."""
        return self.threshold - self.buffer <= amount < self.threshold

    def detect(self, transactions: TransactionSource) -> DetectedPattern:
        index = _as_index(transactions)
        flagged: set[str] = set()
        destinations = 0

        for destination_id, incoming in index.by_destination.items():
            in_band = [t for t in incoming if self.is_in_band(t.amount)]

            # Sorted by time: a deposit has an in-band neighbour within the
            # window iff its nearest in-band neighbour is within the window.
            hit = False
            for previous, current in zip(in_band, in_band[1:]):
                if current.timestamp - previous.timestamp <= self.window:
                    flagged.add(previous.id)
                    flagged.add(current.id)
                    hit = True
            if hit:
                destinations += 1

        logger.debug(
            "structuring: %d transactions flagged across %d destinations",
            len(flagged),
            destinations,
        )

        return self._build_pattern(
            index,
            flagged,
            details={
                "threshold": str(self.threshold),
                "buffer": str(self.buffer),
                "window_hours": self.window.total_seconds() / 3600,
                "destination_count": destinations,
            },
        )


class RoundTripDetector(AMLPattern):
    """
    Detect round-trip transactions.

    Pattern: funds leave an entity and return to it through intermediaries
    within the time window. A bounded depth-first search runs from every
    entity with outgoing transactions; the visited set is kept per path, so
    an entity may appear again on a different branch.
    """

    MAX_CHAIN_LENGTH = 5
    TIME_WINDOW = timedelta(days=7)

    risk_level = RiskLevel.MEDIUM

    @property
    def pattern_type(self) -> str:
        return "round_trip"

    @property
    def name(self) -> str:
        return "Round-Trip Transactions"

    @property
    def description(self) -> str:
        return "Funds cycling through multiple entities and returning to source"

    def __init__(
        self,
        max_chain_length: int = MAX_CHAIN_LENGTH,
        window: timedelta = TIME_WINDOW,
    ):
        self.max_chain_length = _require_length("max_chain_length", max_chain_length)
        self.window = _require_window("window", window)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RoundTripDetector":
        return cls(
            max_chain_length=settings.round_trip_max_chain_length,
            window=timedelta(days=settings.round_trip_window_days),
        )

    def detect(self, transactions: TransactionSource) -> DetectedPattern:
        index = _as_index(transactions)
        flagged: set[str] = set()

        # The same cycle is found once per member used as start
        cycles: dict[frozenset[str], tuple[str, ...]] = {}

        for start in index.source_entity_ids:
            for trip in self._find_round_trips(index, start):
                key = frozenset(t.id for t in trip)
                flagged.update(key)
                cycles.setdefault(key, tuple(t.id for t in trip))

        logger.debug(
            "round_trip: %d distinct cycles, %d transactions flagged",
            len(cycles),
            len(flagged),
        )

        return self._build_pattern(
            index,
            flagged,
            chains=tuple(cycles.values()),
            details={
                "cycle_count": len(cycles),
                "max_chain_length": self.max_chain_length,
                "window_days": self.window.total_seconds() / 86400,
            },
        )

    def _find_round_trips(
        self,
        index: TransactionIndex,
        start: str,
    ) -> Iterator[tuple[Transaction, ...]]:
        """Yield transaction paths that leave start and return to it."""
        stack: list[tuple[str, tuple[Transaction, ...], frozenset[str]]] = [
            (start, (), frozenset({start}))
        ]

        while stack:
            current, path, visited = stack.pop()

            for txn in index.outgoing(current):
                if path and abs(txn.timestamp - path[0].timestamp) > self.window:
                    continue

                target = txn.destination_entity_id
                if target == start:
                    # A self-transfer alone is not a round trip
                    if path:
                        yield path + (txn,)
                    continue

                # Leave room for the closing transaction
                if target in visited or len(path) + 1 >= self.max_chain_length:
                    continue

                stack.append((target, path + (txn,), visited | {target}))


class LayeringDetector(AMLPattern):
    """
    Detect layering chains.

    Layering = moving near-constant amounts through a chain of distinct
    intermediaries in a short window to obscure the origin. Every
    transaction seeds a branching search; each hop must be strictly later
    than the previous one, within the window of the seed, and within the
    amount variance of the seed's amount.
    """

    MIN_CHAIN_LENGTH = 3
    MAX_CHAIN_LENGTH = 10
    TIME_WINDOW = timedelta(hours=72)
    AMOUNT_VARIANCE = Decimal("0.10")

    risk_level = RiskLevel.HIGH

    @property
    def pattern_type(self) -> str:
        return "layering"

    @property
    def name(self) -> str:
        return "Layering Attempt"

    @property
    def description(self) -> str:
        return "Complex transaction chain obscuring source of funds"

    def __init__(
        self,
        min_chain_length: int = MIN_CHAIN_LENGTH,
        window: timedelta = TIME_WINDOW,
        amount_variance: Union[Decimal, float, str] = AMOUNT_VARIANCE,
        max_chain_length: int = MAX_CHAIN_LENGTH,
    ):
        self.min_chain_length = _require_length("min_chain_length", min_chain_length)
        self.max_chain_length = _require_length("max_chain_length", max_chain_length)
        self.window = _require_window("window", window)
        self.amount_variance = _require_decimal("amount_variance", amount_variance)

        if not 0 <= self.amount_variance <= 1:
            raise ConfigurationError(
                f"amount_variance must be between 0 and 1, got {amount_variance}"
            )
        if self.max_chain_length < self.min_chain_length:
            raise ConfigurationError(
                f"max_chain_length ({max_chain_length}) is below "
                f"min_chain_length ({min_chain_length})"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "LayeringDetector":
        return cls(
            min_chain_length=settings.layering_min_chain_length,
            window=timedelta(hours=settings.layering_window_hours),
            amount_variance=settings.layering_amount_variance,
            max_chain_length=settings.layering_max_chain_length,
        )

    def is_similar_amount(self, amount: Decimal, initial: Decimal) -> bool:
        return abs(amount - initial) / initial <= self.amount_variance

    def detect(self, transactions: TransactionSource) -> DetectedPattern:
        index = _as_index(transactions)
        flagged: set[str] = set()
        chains: list[tuple[str, ...]] = []

        for seed in index.transactions:
            # Relative variance is undefined for a zero seed
            if seed.amount <= 0:
                continue
            for chain in self._extend_chains(index, seed):
                flagged.update(t.id for t in chain)
                chains.append(tuple(t.id for t in chain))

        logger.debug(
            "layering: %d chains, %d transactions flagged", len(chains), len(flagged)
        )

        return self._build_pattern(
            index,
            flagged,
            chains=tuple(chains),
            details={
                "chain_count": len(chains),
                "longest_chain": max((len(c) for c in chains), default=0),
                "min_chain_length": self.min_chain_length,
                "window_hours": self.window.total_seconds() / 3600,
                "amount_variance": str(self.amount_variance),
            },
        )

    def _extend_chains(
        self,
        index: TransactionIndex,
        seed: Transaction,
    ) -> Iterator[tuple[Transaction, ...]]:
        """Yield maximal chains of at least min_chain_length starting at seed."""
        deadline = seed.timestamp + self.window
        stack: list[tuple[tuple[Transaction, ...], frozenset[str]]] = [
            ((seed,), frozenset({seed.source_entity_id, seed.destination_entity_id}))
        ]

        while stack:
            chain, visited = stack.pop()
            last = chain[-1]
            extended = False

            if len(chain) < self.max_chain_length:
                for txn in index.outgoing_after(last.destination_entity_id, last.timestamp):
                    if txn.timestamp > deadline:
                        break
                    if txn.destination_entity_id in visited:
                        continue
                    if not self.is_similar_amount(txn.amount, seed.amount):
                        continue
                    stack.append((chain + (txn,), visited | {txn.destination_entity_id}))
                    extended = True

            # Prefixes of an extended chain are flagged through the extension
            if not extended and len(chain) >= self.min_chain_length:
                yield chain


class AMLPatternDetector:
    """
    Orchestrates the transaction pattern detectors.

    Usage:
        detector = AMLPatternDetector()
        patterns = detector.detect_all(transactions)
    """

    def __init__(
        self,
        detectors: Optional[list[AMLPattern]] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize with pattern detectors.

        Args:
            detectors: List of pattern detectors (built from settings if None)
            settings: Detection settings (process settings if None)
        """
        if detectors is None:
            settings = settings or get_settings()
            detectors = [
                StructuringDetector.from_settings(settings),
                RoundTripDetector.from_settings(settings),
                LayeringDetector.from_settings(settings),
            ]
        self.detectors = detectors

    def run(self, transactions: TransactionSource) -> list[DetectedPattern]:
        """Run every detector and return all results, empty ones included."""
        index = _as_index(transactions)
        results = []
        for detector in self.detectors:
            pattern = detector.detect(index)
            logger.debug(
                "%s: %d transactions flagged",
                detector.pattern_type,
                len(pattern.transactions),
            )
            results.append(pattern)
        return results

    def detect_all(self, transactions: TransactionSource) -> list[DetectedPattern]:
        """
        Run all pattern detectors on transactions.

        Args:
            transactions: TransactionIndex or transaction records

        Returns:
            Non-empty patterns, highest risk level first
        """
        patterns = [p for p in self.run(transactions) if not p.is_empty]
        patterns.sort(key=lambda p: (-p.risk_level.rank, -len(p.transactions)))
        return patterns

    def detect_pattern(
        self,
        pattern_type: str,
        transactions: TransactionSource,
    ) -> DetectedPattern:
        """
        Run a specific pattern detector.

        Raises:
            ValueError: if no detector handles pattern_type
        """
        for detector in self.detectors:
            if detector.pattern_type == pattern_type:
                return detector.detect(transactions)

        raise ValueError(f"Unknown pattern type: {pattern_type}")

    def add_detector(self, detector: AMLPattern) -> None:
        """Add a custom pattern detector."""
        self.detectors.append(detector)
