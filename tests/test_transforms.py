"""Tests for ingestra.transforms."""

import pytest

from ingestra.schemas import ColumnTransform, DedupeConfig, FilterCondition, FilterConfig, TransformConfig
from ingestra.transforms import apply_transforms, matches


ROWS = [
    {"id": "1", "name": " Ada ", "score": "90", "team": "red"},
    {"id": "2", "name": "Grace", "score": "", "team": "blue"},
    {"id": "3", "name": "Alan", "score": "75", "team": "red"},
    {"id": "3", "name": "Alan T", "score": "80", "team": "red"},
]
HEADERS = ["id", "name", "score", "team"]


class TestColumnTransforms:
    def test_rename(self):
        config = TransformConfig(transforms=(ColumnTransform("name", "rename", {"to": "full_name"}),))
        rows, headers = apply_transforms(ROWS, HEADERS, config)
        assert headers == ["id", "full_name", "score", "team"]
        assert rows[1]["full_name"] == "Grace"
        assert "name" not in rows[1]

    def test_default_and_cast(self):
        config = TransformConfig(transforms=(
            ColumnTransform("score", "default", {"value": "0"}),
            ColumnTransform("score", "cast", {"to": "int"}),
        ))
        rows, _ = apply_transforms(ROWS, HEADERS, config)
        assert [r["score"] for r in rows] == [90, 0, 75, 80]

    def test_default_adds_column(self):
        config = TransformConfig(transforms=(ColumnTransform("source", "default", {"value": "upload"}),))
        rows, headers = apply_transforms(ROWS, HEADERS, config)
        assert headers[-1] == "source"
        assert rows[0]["source"] == "upload"

    def test_failed_cast_leaves_value(self):
        config = TransformConfig(transforms=(ColumnTransform("name", "cast", {"to": "int"}),))
        rows, _ = apply_transforms(ROWS, HEADERS, config)
        assert rows[1]["name"] == "Grace"

    def test_infinite_cast_leaves_value(self):
        rows = [{"qty": "5"}, {"qty": "inf"}, {"qty": "1e999"}, {"qty": "7"}]
        config = TransformConfig(transforms=(ColumnTransform("qty", "cast", {"to": "int"}),))
        cast, _ = apply_transforms(rows, ["qty"], config)
        assert [r["qty"] for r in cast] == [5, "inf", "1e999", 7]

    def test_string_ops(self):
        config = TransformConfig(transforms=(
            ColumnTransform("name", "trim"),
            ColumnTransform("name", "uppercase"),
            ColumnTransform("team", "lowercase"),
        ))
        rows, _ = apply_transforms(ROWS, HEADERS, config)
        assert rows[0]["name"] == "ADA"

    def test_inputs_not_mutated(self):
        config = TransformConfig(transforms=(ColumnTransform("name", "trim"),))
        apply_transforms(ROWS, HEADERS, config)
        assert ROWS[0]["name"] == " Ada "

    def test_invalid_operation(self):
        with pytest.raises(ValueError):
            ColumnTransform("name", "explode")

    def test_rename_requires_target(self):
        with pytest.raises(ValueError, match="params.to"):
            ColumnTransform("name", "rename")


class TestFilter:
    @pytest.mark.parametrize("operator,value,expected", [
        ("eq", "red", True),
        ("ne", "red", False),
        ("contains", "re", True),
        ("not_null", None, True),
    ])
    def test_operators_on_text(self, operator, value, expected):
        assert matches(ROWS[0], FilterCondition("team", operator, value)) is expected

    @pytest.mark.parametrize("operator,value,expected", [
        ("gt", 80, True),
        ("gte", "90", True),
        ("lt", 100, True),
        ("lte", 89, False),
        ("eq", 90, True),
    ])
    def test_numeric_comparison(self, operator, value, expected):
        assert matches(ROWS[0], FilterCondition("score", operator, value)) is expected

    def test_missing_value_never_compares(self):
        assert matches({"score": None}, FilterCondition("score", "gt", 1)) is False

    def test_and_or(self):
        conditions = (FilterCondition("team", "eq", "red"), FilterCondition("score", "gte", 80))
        rows, _ = apply_transforms(ROWS, HEADERS, TransformConfig(filter=FilterConfig(conditions)))
        assert [r["name"] for r in rows] == [" Ada ", "Alan T"]

        rows, _ = apply_transforms(ROWS, HEADERS, TransformConfig(filter=FilterConfig(conditions, logic="or")))
        assert len(rows) == 3


class TestDedupe:
    def test_keep_first(self):
        rows, _ = apply_transforms(ROWS, HEADERS, TransformConfig(dedupe=DedupeConfig(("id",))))
        assert [r["name"] for r in rows] == [" Ada ", "Grace", "Alan"]

    def test_keep_last(self):
        rows, _ = apply_transforms(ROWS, HEADERS, TransformConfig(dedupe=DedupeConfig(("id",), keep_first=False)))
        assert [r["name"] for r in rows] == [" Ada ", "Grace", "Alan T"]

    def test_order_transform_filter_dedupe(self):
        config = TransformConfig(
            transforms=(ColumnTransform("name", "rename", {"to": "who"}),),
            filter=FilterConfig((FilterCondition("who", "not_null"),)),
            dedupe=DedupeConfig(("who",)),
        )
        rows, headers = apply_transforms(ROWS, HEADERS, config)
        assert "who" in headers
        assert len(rows) == 4

    def test_none_config(self):
        rows, headers = apply_transforms(ROWS, HEADERS, None)
        assert rows == ROWS
        assert rows is not ROWS
