"""Tests for ModelAssist."""

from unittest.mock import MagicMock

from ingestra.stack_clients.chat import ModelAssist, neutral_quality


class TestModelAssist:
    def test_unavailable_defaults(self):
        assist = ModelAssist()
        assert not assist.available
        assert assist.plan_extraction([{"a": 1}]) == ""
        assert assist.parse_structured("a=1", "{a: int}") is None
        assert assist.evaluate_quality([{"a": 1}]) == neutral_quality()

    def test_client_failure_returns_default(self):
        client = MagicMock()
        client.complete.side_effect = RuntimeError("quota exceeded")
        assist = ModelAssist(client)

        assert assist.evaluate_quality([{"a": 1}]) == {"score": 0.5, "issues": ["Could not evaluate quality"]}
        assert assist.plan_extraction([]) == ""

    def test_quality_score_clamped(self):
        client = MagicMock()
        client.complete.return_value = 'Sure: {"score": 1.7, "issues": ["dates mixed"]}'

        quality = ModelAssist(client).evaluate_quality([{"a": 1}], expected={"a": "int"})

        assert quality == {"score": 1.0, "issues": ["dates mixed"]}
        prompt = client.complete.call_args[0][0][0]["content"]
        assert "Expected format" in prompt

    def test_unparseable_quality(self):
        client = MagicMock()
        client.complete.return_value = "looks fine to me"
        assert ModelAssist(client).evaluate_quality([]) == neutral_quality()

    def test_parse_structured_extracts_json(self):
        client = MagicMock()
        client.complete.return_value = 'Here you go:\n[{"id": 1}]\n'
        assert ModelAssist(client).parse_structured("id 1", "[{id}]") == [{"id": 1}]

    def test_plan_includes_lessons(self):
        client = MagicMock()
        client.complete.return_value = "1. id"
        plan = ModelAssist(client).plan_extraction([{"id": 1}], lessons=["halve the batch"])
        assert plan == "1. id"
        assert "halve the batch" in client.complete.call_args[0][0][0]["content"]
