"""
Row-level write descriptions.

A Mutation is never modified after it is built. Its effect happens only when
it is buffered into a transaction and committed, or submitted as part of a
MutationGroup in a batch write.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Mapping, Optional, Sequence, Tuple

from distributeddb.data.keyset import KeySet


class MutationType(Enum):
    """Kinds of row-level writes."""

    INSERT = "INSERT"  # Fails if the row exists
    UPDATE = "UPDATE"  # Fails if the row does not exist
    INSERT_OR_UPDATE = "INSERT_OR_UPDATE"  # Upsert, untouched columns kept
    REPLACE = "REPLACE"  # Upsert, untouched columns cleared
    DELETE = "DELETE"

    def is_write(self) -> bool:
        """Check if the mutation carries column values."""
        return self is not MutationType.DELETE


@dataclass(frozen=True)
class Mutation:
    """
    A single row-level write or delete.

    Build instances with the class constructors rather than directly:

    ```
    Mutation.insert_or_update("Singers", {"SingerId": 4520, "FirstName": "Lauren"})
    Mutation.delete("Singers", KeySet.of(4520))
    ```

    Attributes:
        operation: Kind of write
        table: Target table name
        columns: Column names, in binding order (write variants)
        values: Values aligned with columns (write variants)
        key_set: Rows to delete (DELETE only)
    """
    operation: MutationType
    table: str
    columns: Tuple[str, ...] = ()
    values: Tuple[Any, ...] = ()
    key_set: Optional[KeySet] = None

    def __post_init__(self):
        if not self.table:
            raise ValueError("Mutation table name must not be empty")

        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "values", tuple(self.values))

        if self.operation.is_write():
            self._validate_write()
        else:
            self._validate_delete()

    def _validate_write(self) -> None:
        if not self.columns:
            raise ValueError(
                f"{self.operation.value} mutation on {self.table} needs at least one column"
            )

        if len(self.columns) != len(self.values):
            raise ValueError(
                f"Got {len(self.columns)} columns but {len(self.values)} values"
            )

        if len(set(self.columns)) != len(self.columns):
            raise ValueError(f"Duplicate column in mutation on {self.table}")

        if self.key_set is not None:
            raise ValueError("Only DELETE mutations take a key set")

    def _validate_delete(self) -> None:
        if self.key_set is not None and not isinstance(self.key_set, KeySet):
            raise TypeError(f"Expected KeySet, got {type(self.key_set).__name__}")

        if self.key_set is None or self.key_set.is_empty():
            raise ValueError(f"DELETE mutation on {self.table} needs a non-empty key set")

        if self.columns or self.values:
            raise ValueError("DELETE mutations do not take column values")

    @classmethod
    def _write(
        cls,
        operation: MutationType,
        table: str,
        row: Optional[Mapping[str, Any]],
        columns: Optional[Sequence[str]],
        values: Optional[Sequence[Any]],
    ) -> "Mutation":
        if row is not None:
            if columns is not None or values is not None:
                raise ValueError("Pass either a row mapping or columns/values, not both")
            return cls(operation, table, tuple(row.keys()), tuple(row.values()))

        return cls(operation, table, tuple(columns or ()), tuple(values or ()))

    @classmethod
    def insert(cls, table, row=None, columns=None, values=None) -> "Mutation":
        """Insert a new row; the commit fails if it already exists."""
        return cls._write(MutationType.INSERT, table, row, columns, values)

    @classmethod
    def update(cls, table, row=None, columns=None, values=None) -> "Mutation":
        """Update an existing row; the commit fails if it does not exist."""
        return cls._write(MutationType.UPDATE, table, row, columns, values)

    @classmethod
    def insert_or_update(cls, table, row=None, columns=None, values=None) -> "Mutation":
        """Insert a row, or update the given columns if it exists."""
        return cls._write(MutationType.INSERT_OR_UPDATE, table, row, columns, values)

    @classmethod
    def replace(cls, table, row=None, columns=None, values=None) -> "Mutation":
        """Insert a row, or replace it entirely if it exists."""
        return cls._write(MutationType.REPLACE, table, row, columns, values)

    @classmethod
    def delete(cls, table: str, key_set: KeySet) -> "Mutation":
        """Delete the rows selected by key_set."""
        return cls(MutationType.DELETE, table, key_set=key_set)

    def as_dict(self) -> dict:
        """Get column -> value bindings in column order."""
        return dict(zip(self.columns, self.values))

    def is_idempotent(self) -> bool:
        """
        Check if applying the mutation twice has the same effect as once.

        INSERT and UPDATE are not: reapplying them can fail or, for UPDATE
        after a concurrent write, overwrite newer data.
        """
        return self.operation in (
            MutationType.INSERT_OR_UPDATE,
            MutationType.REPLACE,
            MutationType.DELETE,
        )


class MutationGroup:
    """
    An ordered batch of mutations applied atomically within a batch write.

    Groups in one batch write are applied independently of each other.
    """

    __slots__ = ("_mutations",)

    def __init__(self, mutations: Sequence[Mutation]):
        """
        Initialize mutation group.

        Args:
            mutations: Mutations in application order (at least one)
        """
        mutations = tuple(mutations)
        if not mutations:
            raise ValueError("MutationGroup needs at least one mutation")

        for mutation in mutations:
            if not isinstance(mutation, Mutation):
                raise TypeError(f"Expected Mutation, got {type(mutation).__name__}")

        object.__setattr__(self, "_mutations", mutations)

    @classmethod
    def of(cls, *mutations: Mutation) -> "MutationGroup":
        """Create a group from mutations."""
        return cls(mutations)

    def __setattr__(self, name, value):
        raise AttributeError("MutationGroup is immutable")

    @property
    def mutations(self) -> Tuple[Mutation, ...]:
        return self._mutations

    def __iter__(self) -> Iterator[Mutation]:
        return iter(self._mutations)

    def __len__(self) -> int:
        return len(self._mutations)

    def __eq__(self, other):
        if not isinstance(other, MutationGroup):
            return NotImplemented
        return self._mutations == other._mutations

    def __hash__(self):
        return hash(self._mutations)

    def __repr__(self):
        tables = ", ".join(m.table for m in self._mutations)
        return f"MutationGroup({len(self._mutations)} mutations: {tables})"
