"""Reset registry for process-wide state (settings, default caches)."""

from __future__ import annotations

from collections.abc import Callable

_reset_fns: list[Callable[[], None]] = []


def register_singleton(reset_fn: Callable[[], None]) -> None:
    """Register a reset function to be called between test cases."""
    _reset_fns.append(reset_fn)


def reset_all_singletons() -> None:
    """Reset every registered module-level instance."""
    for fn in _reset_fns:
        fn()
