"""
Subscription Registry for the streaming client.

Holds the desired subscription state per channel independently of the
connection. It is mutated only by subscribe/unsubscribe and survives every
disconnect; after each successful authentication the connection replays its
full contents in a single consolidated message.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Mapping, Optional

from alpa.stream.errors import SubscriptionError
from alpa.types.aliases import Channel, Symbol, SubscriptionSpec

logger = logging.getLogger(__name__)

WILDCARD = "*"


def normalize_symbol(symbol: str) -> Symbol:
    """Upper-case and strip a ticker; the "*" wildcard is kept as-is."""
    if not isinstance(symbol, str):
        raise SubscriptionError(f"Symbol must be a string, got {symbol!r}")
    normalized = symbol.strip().upper()
    if not normalized:
        raise SubscriptionError("Symbol must be a non-empty string")
    return normalized


def normalize_stream_name(name: str) -> str:
    """Stream names (e.g. "trade_updates") are lower-case on the wire."""
    if not isinstance(name, str) or not name.strip():
        raise SubscriptionError(f"Stream name must be a non-empty string, got {name!r}")
    return name.strip().lower()


class SubscriptionRegistry:
    """
    Desired-state set of symbol subscriptions, keyed by channel.

    Symbols keep insertion order so the wire messages are deterministic.
    Merges are idempotent and removals only touch symbols that are present.

    Usage:
        registry = SubscriptionRegistry(("trades", "quotes", "bars"))
        added = registry.add({"trades": ["AAPL", "MSFT"]})
        registry.remove({"trades": ["MSFT"]})
        registry.snapshot()  # {"trades": ["AAPL"], "quotes": [], "bars": []}
    """

    def __init__(
        self,
        channels: Iterable[Channel],
        initial: Optional[Mapping[Channel, Iterable[Symbol]]] = None,
        normalizer: Callable[[str], Symbol] = normalize_symbol,
    ) -> None:
        self._normalizer = normalizer
        self._channels: tuple[Channel, ...] = tuple(channels)
        if not self._channels:
            raise SubscriptionError("A registry needs at least one channel")
        # dict used as an ordered set
        self._symbols: dict[Channel, dict[Symbol, None]] = {ch: {} for ch in self._channels}
        if initial:
            self.add(initial)

    @property
    def channels(self) -> tuple[Channel, ...]:
        return self._channels

    def normalize(self, spec: Mapping[Channel, Iterable[Symbol]]) -> SubscriptionSpec:
        """
        Validate channel names and normalize symbols of a subscription spec.

        Returns a spec with every known channel present (possibly empty) and
        duplicates removed.

        Raises:
            SubscriptionError: On unknown channels or invalid symbols
        """
        unknown = [ch for ch in spec if ch not in self._symbols]
        if unknown:
            raise SubscriptionError(
                f"Unknown channel(s): {', '.join(sorted(unknown))}",
                channel=unknown[0],
                details={"known_channels": list(self._channels)},
            )

        normalized: SubscriptionSpec = {}
        for channel in self._channels:
            symbols = spec.get(channel) or ()
            if isinstance(symbols, str):
                symbols = [symbols]
            normalized[channel] = list(dict.fromkeys(self._normalizer(s) for s in symbols))
        return normalized

    def add(self, spec: Mapping[Channel, Iterable[Symbol]]) -> SubscriptionSpec:
        """Merge symbols into the registry. Returns only the symbols that were new."""
        added: SubscriptionSpec = {}
        for channel, symbols in self.normalize(spec).items():
            current = self._symbols[channel]
            new = [s for s in symbols if s not in current]
            for symbol in new:
                current[symbol] = None
            added[channel] = new
        logger.debug(f"Registry add: {added}")
        return added

    def remove(self, spec: Mapping[Channel, Iterable[Symbol]]) -> SubscriptionSpec:
        """
        Remove symbols from the registry. Returns only the symbols that were present.

        Membership is a set, not a count: removing a symbol drops it even if it
        was already registered before the matching add(). add(S) then remove(S)
        restores the previous contents only when S did not overlap them.
        """
        removed: SubscriptionSpec = {}
        for channel, symbols in self.normalize(spec).items():
            current = self._symbols[channel]
            present = [s for s in symbols if s in current]
            for symbol in present:
                del current[symbol]
            removed[channel] = present
        logger.debug(f"Registry remove: {removed}")
        return removed

    def snapshot(self) -> SubscriptionSpec:
        """Copy of the full registry contents, every channel present."""
        return {ch: list(symbols) for ch, symbols in self._symbols.items()}

    def symbols(self, channel: Channel) -> list[Symbol]:
        if channel not in self._symbols:
            raise SubscriptionError(f"Unknown channel: {channel}", channel=channel)
        return list(self._symbols[channel])

    def is_empty(self) -> bool:
        return not any(self._symbols.values())

    def __contains__(self, item: tuple[Channel, Symbol]) -> bool:
        channel, symbol = item
        return symbol in self._symbols.get(channel, {})

    def __len__(self) -> int:
        return sum(len(symbols) for symbols in self._symbols.values())

    def __repr__(self) -> str:
        return f"SubscriptionRegistry({self.snapshot()!r})"
