"""
Tests for mutations, key sets, mutation groups and statements.
"""

import pytest

from distributeddb.data import (
    KeyRange,
    KeySet,
    Mutation,
    MutationGroup,
    MutationType,
    Statement,
)


class TestMutation:
    """Test Mutation construction and validation."""

    def test_insert_or_update_from_row(self):
        """Test building a write mutation from a row mapping."""
        mutation = Mutation.insert_or_update(
            "Singers",
            {"SingerId": 4520, "FirstName": "Lauren", "LastName": "Lee"},
        )

        assert mutation.operation == MutationType.INSERT_OR_UPDATE
        assert mutation.table == "Singers"
        assert mutation.columns == ("SingerId", "FirstName", "LastName")
        assert mutation.values == (4520, "Lauren", "Lee")
        assert mutation.as_dict() == {"SingerId": 4520, "FirstName": "Lauren", "LastName": "Lee"}

    def test_insert_from_columns_and_values(self):
        """Test building a write mutation from aligned sequences."""
        mutation = Mutation.insert("Singers", columns=["SingerId", "FirstName"], values=[1, "Ann"])

        assert mutation.operation == MutationType.INSERT
        assert mutation.columns == ("SingerId", "FirstName")
        assert mutation.values == (1, "Ann")

    def test_column_order_preserved(self):
        """Test columns keep their binding order."""
        mutation = Mutation.update("Singers", {"LastName": "Lee", "SingerId": 1})

        assert mutation.columns == ("LastName", "SingerId")

    def test_mutation_is_immutable(self):
        """Test mutations cannot be modified after construction."""
        mutation = Mutation.replace("Singers", {"SingerId": 1})

        with pytest.raises(AttributeError):
            mutation.table = "Albums"

    def test_delete_with_keys(self):
        """Test building a delete mutation."""
        mutation = Mutation.delete("Singers", KeySet.of(1, 2))

        assert mutation.operation == MutationType.DELETE
        assert mutation.key_set.keys == ((1,), (2,))
        assert mutation.columns == ()

    def test_empty_table_rejected(self):
        """Test table name is required."""
        with pytest.raises(ValueError):
            Mutation.insert("", {"SingerId": 1})

    def test_write_without_columns_rejected(self):
        """Test write mutations need columns."""
        with pytest.raises(ValueError, match="at least one column"):
            Mutation.insert("Singers", {})

    def test_length_mismatch_rejected(self):
        """Test columns and values must align."""
        with pytest.raises(ValueError, match="columns"):
            Mutation.insert("Singers", columns=["SingerId", "FirstName"], values=[1])

    def test_duplicate_columns_rejected(self):
        """Test a column may be set only once."""
        with pytest.raises(ValueError, match="Duplicate"):
            Mutation.insert("Singers", columns=["SingerId", "SingerId"], values=[1, 2])

    def test_row_and_columns_together_rejected(self):
        """Test row mapping and sequences are exclusive."""
        with pytest.raises(ValueError):
            Mutation.insert("Singers", {"SingerId": 1}, columns=["SingerId"], values=[1])

    def test_delete_with_empty_key_set_rejected(self):
        """Test deletes need a non-empty key set."""
        with pytest.raises(ValueError, match="key set"):
            Mutation.delete("Singers", KeySet())

    def test_delete_requires_key_set_type(self):
        """Test delete rejects plain key lists."""
        with pytest.raises(TypeError, match="KeySet"):
            Mutation.delete("Singers", [1])

    def test_idempotence(self):
        """Test idempotence classification."""
        assert Mutation.insert_or_update("Singers", {"SingerId": 1}).is_idempotent()
        assert Mutation.replace("Singers", {"SingerId": 1}).is_idempotent()
        assert Mutation.delete("Singers", KeySet.all()).is_idempotent()
        assert not Mutation.insert("Singers", {"SingerId": 1}).is_idempotent()
        assert not Mutation.update("Singers", {"SingerId": 1}).is_idempotent()


class TestKeySet:
    """Test KeySet and KeyRange."""

    def test_single_values_become_tuples(self):
        """Test scalar keys are normalized to tuples."""
        key_set = KeySet.of(1, (2, "a"), [3, "b"])

        assert key_set.keys == ((1,), (2, "a"), (3, "b"))

    def test_range(self):
        """Test range key set."""
        key_set = KeySet.range(1, 10, end_closed=True)

        assert key_set.ranges == (KeyRange((1,), (10,), True, True),)
        assert not key_set.is_empty()

    def test_all(self):
        """Test all-rows key set."""
        assert KeySet.all().all_
        assert not KeySet.all().is_empty()
        assert KeySet().is_empty()

    def test_union(self):
        """Test combining key sets."""
        key_set = KeySet.union([KeySet.of(1), KeySet.range(5, 9)])

        assert key_set.keys == ((1,),)
        assert len(key_set.ranges) == 1
        assert not key_set.all_

    def test_invalid_range_type_rejected(self):
        """Test ranges must be KeyRange instances."""
        with pytest.raises(TypeError):
            KeySet(ranges=((1, 2),))


class TestMutationGroup:
    """Test MutationGroup."""

    def test_group_keeps_order(self):
        """Test mutations keep submission order."""
        first = Mutation.insert("Singers", {"SingerId": 1})
        second = Mutation.insert("Albums", {"SingerId": 1, "AlbumId": 1})

        group = MutationGroup.of(first, second)

        assert list(group) == [first, second]
        assert len(group) == 2
        assert group.mutations == (first, second)

    def test_empty_group_rejected(self):
        """Test groups need at least one mutation."""
        with pytest.raises(ValueError):
            MutationGroup.of()

    def test_non_mutation_rejected(self):
        """Test groups only hold mutations."""
        with pytest.raises(TypeError):
            MutationGroup(["not a mutation"])

    def test_group_is_immutable(self):
        """Test groups cannot be modified."""
        group = MutationGroup.of(Mutation.insert("Singers", {"SingerId": 1}))

        with pytest.raises(AttributeError):
            group.extra = 1

    def test_source_list_changes_do_not_leak(self):
        """Test later changes to the input list do not affect the group."""
        mutations = [Mutation.insert("Singers", {"SingerId": 1})]
        group = MutationGroup(mutations)

        mutations.append(Mutation.insert("Singers", {"SingerId": 2}))

        assert len(group) == 1


class TestStatement:
    """Test Statement."""

    def test_of_binds_params(self):
        """Test keyword params are bound."""
        statement = Statement.of("DELETE FROM Singers WHERE SingerId = @id", id=5)

        assert statement.params["id"] == 5

    def test_params_read_only(self):
        """Test params cannot be modified."""
        statement = Statement.of("DELETE FROM Singers WHERE SingerId = @id", id=5)

        with pytest.raises(TypeError):
            statement.params["id"] = 6

    def test_empty_sql_rejected(self):
        """Test SQL is required."""
        with pytest.raises(ValueError):
            Statement("  ")

    def test_equality(self):
        """Test statements compare by SQL and params."""
        assert Statement.of("SELECT 1") == Statement("SELECT 1")
        assert Statement.of("SELECT @a", a=1) != Statement.of("SELECT @a", a=2)
