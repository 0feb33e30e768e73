"""Test condition compilation and condition helpers."""

from typing import Any

import pytest
from sqlalchemy.sql.elements import False_, True_

from repokit.repositories.conditions import (
    column_attributes,
    compile_condition,
    merge_or,
    with_tombstone,
)
from repokit.repositories.exceptions import InvalidQueryError
from tests.factories import Author


def render(condition: Any) -> str:
    clause = compile_condition(Author, condition)
    return str(clause.compile(compile_kwargs={"literal_binds": True}))


class TestCompileCondition:
    """Test compile_condition()."""

    def test_none_matches_everything(self) -> None:
        assert isinstance(compile_condition(Author, None), True_)

    def test_empty_mapping_matches_everything(self) -> None:
        assert isinstance(compile_condition(Author, {}), True_)

    def test_equality(self) -> None:
        assert render({"name": "Ada"}) == "authors.name = 'Ada'"

    def test_none_value_is_null_check(self) -> None:
        assert render({"email": None}) == "authors.email IS NULL"

    def test_list_value_is_membership(self) -> None:
        assert render({"id": [1, 2, 3]}) == "authors.id IN (1, 2, 3)"

    def test_several_fields_are_and_ed(self) -> None:
        assert render({"name": "Ada", "score": 3}) == "authors.name = 'Ada' AND authors.score = 3"

    def test_operators_on_one_field(self) -> None:
        assert render({"score": {"$gte": 10, "$lt": 100}}) == (
            "authors.score >= 10 AND authors.score < 100"
        )

    @pytest.mark.parametrize(
        "operator,expected",
        [
            ("$eq", "authors.score = 5"),
            ("$ne", "authors.score != 5"),
            ("$gt", "authors.score > 5"),
            ("$lte", "authors.score <= 5"),
        ],
    )
    def test_comparison_operators(self, operator: str, expected: str) -> None:
        assert render({"score": {operator: 5}}) == expected

    def test_not_in(self) -> None:
        assert "authors.score NOT IN (1, 2)" in render({"score": {"$notin": (1, 2)}})

    def test_like_on_text_column(self) -> None:
        assert render({"name": {"$like": "%jo%"}}) == "authors.name LIKE '%jo%'"

    def test_like_on_numeric_column_casts(self) -> None:
        rendered = render({"score": {"$like": "%1%"}})

        assert rendered.startswith("CAST(authors.score AS VARCHAR")
        assert rendered.endswith("LIKE '%1%'")

    def test_or(self) -> None:
        assert render({"$or": [{"name": "Ada"}, {"name": "Amy"}]}) == (
            "authors.name = 'Ada' OR authors.name = 'Amy'"
        )

    def test_empty_or_matches_nothing(self) -> None:
        assert isinstance(compile_condition(Author, {"$or": []}), False_)

    def test_nested_and(self) -> None:
        rendered = render({"$and": [{"score": {"$gt": 1}}, {"$or": [{"name": "A"}, {"name": "B"}]}]})

        assert rendered == "authors.score > 1 AND (authors.name = 'A' OR authors.name = 'B')"

    def test_unknown_field(self) -> None:
        with pytest.raises(InvalidQueryError, match="Unknown field in condition: 'nickname'"):
            compile_condition(Author, {"nickname": "A"})

    def test_unknown_operator(self) -> None:
        with pytest.raises(InvalidQueryError, match="Unknown operator"):
            compile_condition(Author, {"score": {"$between": [1, 2]}})

    def test_empty_operator_mapping(self) -> None:
        with pytest.raises(InvalidQueryError, match="Empty operator mapping"):
            compile_condition(Author, {"score": {}})

    @pytest.mark.parametrize("value", ["name", {"name": "A"}, 5, ["not-a-mapping"]])
    def test_malformed_combinator(self, value: Any) -> None:
        with pytest.raises(InvalidQueryError, match="expects a list of conditions"):
            compile_condition(Author, {"$or": value})

    def test_condition_must_be_mapping(self) -> None:
        with pytest.raises(InvalidQueryError, match="must be a mapping"):
            compile_condition(Author, [("name", "Ada")])  # type: ignore[arg-type]


class TestConditionHelpers:
    """Test helpers that derive new conditions."""

    def test_column_attributes(self) -> None:
        columns = column_attributes(Author)

        assert set(columns) == {"id", "name", "email", "score", "is_deleted"}
        assert columns["name"] is Author.name

    def test_with_tombstone_returns_copy(self) -> None:
        condition = {"name": "Ada"}

        scoped = with_tombstone(condition, "is_deleted", 0)

        assert scoped == {"name": "Ada", "is_deleted": 0}
        assert condition == {"name": "Ada"}

    def test_with_tombstone_on_none(self) -> None:
        assert with_tombstone(None, "is_deleted", 0) == {"is_deleted": 0}

    def test_merge_or_adds_or(self) -> None:
        condition = {"score": 1}

        merged = merge_or(condition, [{"name": "A"}])

        assert merged == {"score": 1, "$or": [{"name": "A"}]}
        assert condition == {"score": 1}

    def test_merge_or_keeps_existing_or(self) -> None:
        condition = {"$or": [{"score": 1}, {"score": 2}]}

        merged = merge_or(condition, [{"name": "A"}])

        assert merged["$or"] == [{"score": 1}, {"score": 2}]
        assert merged["$and"] == [{"$or": [{"name": "A"}]}]
        assert "$and" not in condition

    def test_merge_or_appends_to_existing_and(self) -> None:
        condition = {"$or": [{"score": 1}], "$and": [{"name": "A"}]}

        merged = merge_or(condition, [{"email": None}])

        assert merged["$and"] == [{"name": "A"}, {"$or": [{"email": None}]}]
        assert condition["$and"] == [{"name": "A"}]
