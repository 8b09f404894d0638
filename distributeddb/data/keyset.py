"""
Key sets selecting the rows removed by a delete mutation.
"""

from dataclasses import dataclass
from typing import Any, Iterable, Tuple

Key = Tuple[Any, ...]


def _as_key(key: Any) -> Key:
    """Normalize a single column value or a sequence into a key tuple."""
    if isinstance(key, tuple):
        return key
    if isinstance(key, list):
        return tuple(key)
    return (key,)


@dataclass(frozen=True)
class KeyRange:
    """
    A range of primary keys.
    
    Attributes:
        start: First key of the range
        end: Last key of the range
        start_closed: Whether start is included
        end_closed: Whether end is included
    """
    start: Key
    end: Key
    start_closed: bool = True
    end_closed: bool = False
    
    def __post_init__(self):
        object.__setattr__(self, "start", _as_key(self.start))
        object.__setattr__(self, "end", _as_key(self.end))


@dataclass(frozen=True)
class KeySet:
    """
    A set of primary keys and key ranges.
    
    Attributes:
        keys: Individual keys
        ranges: Key ranges
        all_: Whether every row of the table is selected
    """
    keys: Tuple[Key, ...] = ()
    ranges: Tuple[KeyRange, ...] = ()
    all_: bool = False
    
    def __post_init__(self):
        object.__setattr__(self, "keys", tuple(_as_key(k) for k in self.keys))
        object.__setattr__(self, "ranges", tuple(self.ranges))
        
        for key_range in self.ranges:
            if not isinstance(key_range, KeyRange):
                raise TypeError(f"Expected KeyRange, got {type(key_range).__name__}")
    
    @classmethod
    def all(cls) -> "KeySet":
        """Select every row."""
        return cls(all_=True)
    
    @classmethod
    def of(cls, *keys: Any) -> "KeySet":
        """Select the given keys."""
        return cls(keys=tuple(keys))
    
    @classmethod
    def range(
        cls,
        start: Any,
        end: Any,
        start_closed: bool = True,
        end_closed: bool = False,
    ) -> "KeySet":
        """Select a single key range."""
        return cls(ranges=(KeyRange(start, end, start_closed, end_closed),))
    
    @classmethod
    def union(cls, key_sets: Iterable["KeySet"]) -> "KeySet":
        """Combine several key sets."""
        keys: list = []
        ranges: list = []
        all_ = False
        for key_set in key_sets:
            keys.extend(key_set.keys)
            ranges.extend(key_set.ranges)
            all_ = all_ or key_set.all_
        return cls(keys=tuple(keys), ranges=tuple(ranges), all_=all_)
    
    def is_empty(self) -> bool:
        """Check if the key set selects nothing."""
        return not self.all_ and not self.keys and not self.ranges
