"""Minimal typed publish/subscribe registries.

Each ``subscribe`` returns a :class:`Subscription` whose ``cancel`` detaches
the callback. Emission walks a copy of the subscriber list, so callbacks may
cancel themselves (or others) while an event is being delivered.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable


class Subscription[C: Callable[..., object]]:
    """Handle for one registered callback."""

    def __init__(self, callback: C, registry: list[Subscription[C]]) -> None:
        self.callback = callback
        self._registry: list[Subscription[C]] | None = registry

    @property
    def active(self) -> bool:
        """Whether the callback still receives events."""
        return self._registry is not None

    def cancel(self) -> None:
        """Detach the callback. Safe to call more than once."""
        if self._registry is None:
            return
        if self in self._registry:
            self._registry.remove(self)
        self._registry = None

    def __repr__(self) -> str:
        name = getattr(self.callback, "__qualname__", repr(self.callback))
        return f"Subscription({name}, active={self.active})"


class Listeners[C: Callable[..., object]]:
    """Ordered list of subscribers notified in registration order."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription[C]] = []

    def subscribe(self, callback: C) -> Subscription[C]:
        subscription = Subscription(callback, self._subscriptions)
        self._subscriptions.append(subscription)
        return subscription

    def emit(self, *args: object) -> None:
        """Call every active subscriber with args. Exceptions propagate."""
        for subscription in list(self._subscriptions):
            if subscription.active:
                subscription.callback(*args)

    def callbacks(self) -> list[C]:
        """Snapshot of the active callbacks, in registration order."""
        return [s.callback for s in self._subscriptions if s.active]

    def clear(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.cancel()

    def __len__(self) -> int:
        return len(self._subscriptions)


class StateListeners[K: Hashable, C: Callable[..., object]]:
    """Subscribers grouped by key, typically a state."""

    def __init__(self) -> None:
        self._by_key: dict[K, Listeners[C]] = {}

    def subscribe(self, key: K, callback: C) -> Subscription[C]:
        return self._by_key.setdefault(key, Listeners()).subscribe(callback)

    def emit(self, key: K, *args: object) -> None:
        """Call the subscribers registered for key."""
        listeners = self._by_key.get(key)
        if listeners is not None:
            listeners.emit(*args)

    def clear(self) -> None:
        for listeners in self._by_key.values():
            listeners.clear()
        self._by_key.clear()

    def count(self, key: K) -> int:
        listeners = self._by_key.get(key)
        return len(listeners) if listeners is not None else 0
