"""
Per-call options attached to writes and transactions.

Options are passed to an entry point at call time and forwarded, unmodified,
to the one remote call that finalizes the unit of work.

```
client.write(mutations, exclude_txn_from_change_streams(), tag("backfill"))
```
"""

from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional

EXCLUDE_TXN_FROM_CHANGE_STREAMS = "exclude_txn_from_change_streams"
PRIORITY = "priority"
TAG = "tag"
RETURN_COMMIT_STATS = "return_commit_stats"


class Priority(Enum):
    """Request priority hint sent to the server."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# key -> (expected type, default)
RECOGNIZED_OPTIONS: Dict[str, tuple] = {
    EXCLUDE_TXN_FROM_CHANGE_STREAMS: (bool, False),
    PRIORITY: (Priority, Priority.MEDIUM),
    TAG: (str, ""),
    RETURN_COMMIT_STATS: (bool, False),
}


class CallOptions(Mapping[str, Any]):
    """
    Immutable mapping of option key to value.

    Only explicitly set keys are stored; reading a property of an unset key
    returns its default. An empty CallOptions is equivalent to passing no
    options at all.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Optional[Mapping[str, Any]] = None, **kwargs: Any):
        """
        Initialize call options.

        Args:
            values: Option key -> value
            **kwargs: More options, overriding values
        """
        merged = dict(values or {})
        merged.update(kwargs)

        for key, value in merged.items():
            self._validate(key, value)

        object.__setattr__(self, "_values", MappingProxyType(merged))

    @staticmethod
    def _validate(key: str, value: Any) -> None:
        if key not in RECOGNIZED_OPTIONS:
            raise ValueError(f"Unknown call option: {key}")

        expected_type, _ = RECOGNIZED_OPTIONS[key]
        if not isinstance(value, expected_type):
            raise ValueError(
                f"Option {key} expects {expected_type.__name__}, got {type(value).__name__}"
            )

    def __setattr__(self, name, value):
        raise AttributeError("CallOptions is immutable")

    @classmethod
    def coerce(cls, options: Optional["CallOptions"]) -> "CallOptions":
        """Turn None into the empty options value."""
        if options is None:
            return EMPTY_OPTIONS
        if not isinstance(options, CallOptions):
            raise TypeError(f"Expected CallOptions, got {type(options).__name__}")
        return options

    @classmethod
    def merge(cls, *options: Optional["CallOptions"]) -> "CallOptions":
        """
        Merge options left to right; later values win on key collision.

        Args:
            *options: Options to merge (None entries are skipped)

        Returns:
            Merged options
        """
        merged: Dict[str, Any] = {}
        for item in options:
            merged.update(cls.coerce(item)._values)
        return cls(merged)

    def merged_with(self, other: Optional["CallOptions"]) -> "CallOptions":
        """Return a copy with other's values layered on top."""
        return CallOptions.merge(self, other)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def get_or_default(self, key: str) -> Any:
        """Get an option value, falling back to its default."""
        if key not in RECOGNIZED_OPTIONS:
            raise KeyError(key)
        return self._values.get(key, RECOGNIZED_OPTIONS[key][1])

    @property
    def exclude_txn_from_change_streams(self) -> bool:
        return self.get_or_default(EXCLUDE_TXN_FROM_CHANGE_STREAMS)

    @property
    def priority(self) -> Priority:
        return self.get_or_default(PRIORITY)

    @property
    def tag(self) -> str:
        return self.get_or_default(TAG)

    @property
    def return_commit_stats(self) -> bool:
        return self.get_or_default(RETURN_COMMIT_STATS)

    def __eq__(self, other):
        if other is None:
            return len(self._values) == 0
        if not isinstance(other, CallOptions):
            return NotImplemented
        return dict(self._values) == dict(other._values)

    def __hash__(self):
        return hash(frozenset(self._values.items()))

    def __repr__(self):
        items = ", ".join(f"{k}={v!r}" for k, v in self._values.items())
        return f"CallOptions({items})"


EMPTY_OPTIONS = CallOptions()


def exclude_txn_from_change_streams(exclude: bool = True) -> CallOptions:
    """Keep the transaction's writes out of change streams watching its tables."""
    return CallOptions({EXCLUDE_TXN_FROM_CHANGE_STREAMS: exclude})


def priority(value: Priority) -> CallOptions:
    """Set the request priority hint."""
    return CallOptions({PRIORITY: value})


def tag(value: str) -> CallOptions:
    """Label the request for server-side diagnostics."""
    return CallOptions({TAG: value})


def commit_stats() -> CallOptions:
    """Ask the server to return commit statistics."""
    return CallOptions({RETURN_COMMIT_STATS: True})
