"""Tests for the language-model transaction parser."""

import json
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from openai import OpenAIError

from fundsplit.clients.openai_client import (
    TransactionParser,
    build_system_prompt,
    find_reasoning_mismatches,
    parse_json_content,
)
from fundsplit.exceptions import ParserAPIError, TransactionParseError
from fundsplit.models import Fund, Member, ParsedTransaction


@pytest.fixture
def members():
    return [
        Member(id="u1", display_name="Minh"),
        Member(id="u2", display_name="Linh"),
        Member(id="u3", display_name="Huy"),
    ]


@pytest.fixture
def fund():
    return Fund(id="f1", name="Da Lat trip", members=["u1", "u2", "u3"], created_by="u1")


def make_response(content: str | None, finish_reason: str = "stop") -> MagicMock:
    """Build a fake chat completion response."""
    choice = MagicMock()
    choice.message.content = content
    choice.finish_reason = finish_reason
    response = MagicMock()
    response.choices = [choice]
    return response


class TestParseJsonContent:
    """Tests for parse_json_content."""

    def test_valid_object(self):
        assert parse_json_content('{"payer": "u1"}') == {"payer": "u1"}

    def test_newlines_are_stripped(self):
        content = '{\n  "desc": "Lunch",\n  "totalAmount": 300000\n}'
        assert parse_json_content(content) == {"desc": "Lunch", "totalAmount": 300000}

    def test_truncated_object_is_repaired(self):
        assert parse_json_content('{"payer": "u1", "totalAmount": 5000') == {
            "payer": "u1",
            "totalAmount": 5000,
        }

    def test_garbage_raises(self):
        with pytest.raises(TransactionParseError):
            parse_json_content("I could not understand that")

    def test_non_object_raises(self):
        with pytest.raises(TransactionParseError, match="JSON object"):
            parse_json_content("[1, 2, 3]")


class TestParsedTransactionFromPayload:
    """ParsedTransaction.from_payload never raises on malformed fields."""

    def test_wire_keys(self):
        parsed = ParsedTransaction.from_payload(
            {
                "desc": "Lunch",
                "totalAmount": 300000,
                "payer": "u1",
                "users": {"u1": "200000", "u2": "-100000", "u3": -100000},
                "reasoning": "FINAL AMOUNTS:",
            }
        )

        assert parsed.description == "Lunch"
        assert parsed.total_amount == 300_000
        assert parsed.payer == "u1"
        assert parsed.splits == {"u1": "200000", "u2": "-100000", "u3": "-100000"}

    def test_model_field_names(self):
        parsed = ParsedTransaction.from_payload(
            {"description": "Taxi", "total_amount": "50000", "splits": {"u1": "0"}}
        )
        assert parsed.description == "Taxi"
        assert parsed.total_amount == 50_000

    @pytest.mark.parametrize(
        "total", [None, "lots", -5, 0, True, "NaN", "Infinity", "1e999999999"]
    )
    def test_bad_total_becomes_none(self, total):
        assert ParsedTransaction.from_payload({"totalAmount": total}).total_amount is None

    def test_malformed_fields(self):
        parsed = ParsedTransaction.from_payload(
            {"payer": 42, "desc": ["x"], "users": "u1:100", "reasoning": {}}
        )

        assert parsed.payer is None
        assert parsed.description == ""
        assert parsed.splits == {}
        assert parsed.reasoning is None

    def test_bad_split_values_dropped(self):
        parsed = ParsedTransaction.from_payload(
            {"users": {"u1": "100", "u2": None, "u3": True, "u4": [1]}}
        )
        assert parsed.splits == {"u1": "100"}


class TestReasoningMismatches:
    """Tests for find_reasoning_mismatches."""

    def test_consistent_reasoning(self, members):
        parsed = ParsedTransaction(
            splits={"u1": "200000", "u2": "-100000"},
            reasoning="FINAL AMOUNTS:\n- Minh: +200.000đ\n- Linh: -100.000đ",
        )
        assert find_reasoning_mismatches(parsed, members) == []

    def test_mismatch_reported(self, members):
        parsed = ParsedTransaction(
            splits={"u1": "200000", "u2": "-100000"},
            reasoning="FINAL AMOUNTS:\n- Minh: +150.000đ\n- Linh: -100.000đ",
        )

        mismatches = find_reasoning_mismatches(parsed, members)

        assert len(mismatches) == 1
        assert "u1" in mismatches[0]

    def test_small_difference_tolerated(self, members):
        parsed = ParsedTransaction(
            splits={"u1": "143333"},
            reasoning="FINAL AMOUNTS:\n- Minh: +143.333,33đ",
        )
        assert find_reasoning_mismatches(parsed, members) == []

    def test_no_reasoning(self, members):
        assert find_reasoning_mismatches(ParsedTransaction(), members) == []


class TestBuildSystemPrompt:
    """Tests for build_system_prompt."""

    def test_includes_members_and_current_user(self, fund, members):
        prompt = build_system_prompt(fund, members, members[1], datetime(2025, 3, 1, 12, 30))

        assert "Da Lat trip" in prompt
        assert "Minh (ID: u1)" in prompt
        assert "Current user making the request: Linh (ID: u2)" in prompt
        assert "2025-03-01 12:30" in prompt
        assert "whole VND units" in prompt


class TestTransactionParser:
    """Tests for TransactionParser with a mocked OpenAI client."""

    @patch("fundsplit.clients.openai_client.OpenAI")
    def test_uses_configured_provider(self, mock_openai):
        TransactionParser(api_key="key", model="llama", base_url="https://example.test/v1")
        mock_openai.assert_called_once_with(api_key="key", base_url="https://example.test/v1")

    @patch("fundsplit.clients.openai_client.OpenAI")
    def test_parse_transaction(self, mock_openai, fund, members):
        payload = {
            "desc": "Minh paid 300k for lunch",
            "totalAmount": 300000,
            "payer": "u1",
            "users": {"u1": "200000", "u2": "-100000", "u3": "-100000"},
        }
        client = mock_openai.return_value
        client.chat.completions.create.return_value = make_response(json.dumps(payload))

        parser = TransactionParser(api_key="key")
        parsed = parser.parse_transaction("lunch 300k", fund, members, current_user_id="u1")

        assert parsed.payer == "u1"
        assert parsed.total_amount == 300_000
        assert parsed.splits["u3"] == "-100000"

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][1] == {"role": "user", "content": "lunch 300k"}

    @patch("fundsplit.clients.openai_client.OpenAI")
    def test_api_failure_is_wrapped(self, mock_openai, fund, members):
        client = mock_openai.return_value
        client.chat.completions.create.side_effect = OpenAIError("rate limited")

        parser = TransactionParser(api_key="key")
        with pytest.raises(ParserAPIError, match="rate limited"):
            parser.parse_transaction("lunch", fund, members)

    @patch("fundsplit.clients.openai_client.OpenAI")
    def test_no_choices(self, mock_openai, fund, members):
        response = MagicMock()
        response.choices = []
        mock_openai.return_value.chat.completions.create.return_value = response

        parser = TransactionParser(api_key="key")
        with pytest.raises(ParserAPIError):
            parser.parse_transaction("lunch", fund, members)

    @patch("fundsplit.clients.openai_client.OpenAI")
    def test_empty_content_raises_parse_error(self, mock_openai, fund, members):
        mock_openai.return_value.chat.completions.create.return_value = make_response(None)

        parser = TransactionParser(api_key="key")
        with pytest.raises(TransactionParseError):
            parser.parse_transaction("lunch", fund, members)
