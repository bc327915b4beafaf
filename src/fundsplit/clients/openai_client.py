"""OpenAI-compatible client for parsing free-text transactions."""

import json
import logging
import re
from datetime import datetime
from typing import Any

from openai import OpenAI, OpenAIError

from ..exceptions import ParserAPIError, TransactionParseError
from ..ledger.allocation import parse_split_amount
from ..models import Fund, Member, ParsedTransaction

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You parse natural-language descriptions of shared expenses into structured data.

## CONTEXT:
- Fund name: {fund_name}
- Fund description: {fund_description}
- Current date and time: {current_date}
- Fund members with IDs: {member_list}
- Current user making the request: {current_user}

## OUTPUT FORMAT:
Return ONLY a JSON object:
{{
  "desc": "Who paid, how much, what for, when/where if known, how it was split. End with 'Original prompt: <the user's text>'",
  "totalAmount": number,
  "payer": "UserId",
  "reasoning": "Step-by-step calculation using member NAMES. End with a 'FINAL AMOUNTS:' section listing each person's net amount, e.g. '- Minh: +358.333đ'",
  "users": {{"UserId": "AmountValue"}}
}}

## RULES:
1. "payer" and every key of "users" must be an exact user ID from the member list, never a name.
2. "totalAmount" is the positive total the payer fronted, in whole {currency} units.
3. "users" holds NET amounts as strings without symbols or separators:
   - payer participates: payer gets totalAmount minus their own share, others get minus their share
   - payer does not participate: payer gets +totalAmount, participants share it
4. The values in "users" must sum to exactly zero.
5. "k" means thousands: "430k" is 430000.
6. If nobody is named as the payer, the current user paid.
7. Only include people who took part; respect exclusions such as "Linh did not eat".
8. The FINAL AMOUNTS in "reasoning" must match "users" exactly.
"""

_FINAL_AMOUNTS_SECTION = re.compile(r"FINAL AMOUNTS:[\s\S]*?(?=\n\n|$)", re.IGNORECASE)
_REASONING_AMOUNT = re.compile(r"([^\n:]+):\s*([+-]?[\d.,]+)\s*đ?")


def build_system_prompt(
    fund: Fund, members: list[Member], current_user: Member | None, now: datetime
) -> str:
    """Render the parser's system prompt for one fund."""
    member_list = ", ".join(f"{m.display_name} (ID: {m.id})" for m in members)
    user_text = (
        f"{current_user.display_name} (ID: {current_user.id})"
        if current_user
        else "unknown"
    )
    return SYSTEM_PROMPT.format(
        fund_name=fund.name,
        fund_description=fund.description or "-",
        current_date=now.strftime("%Y-%m-%d %H:%M"),
        member_list=member_list,
        current_user=user_text,
        currency=fund.currency,
    )


def parse_json_content(content: str) -> dict[str, Any]:
    """
    Parse the model's JSON reply.

    Newlines are stripped before parsing. A reply that opens an object but was
    cut off before the closing brace gets one brace appended and is retried.

    Raises:
        TransactionParseError: If no JSON object can be recovered
    """
    sanitized = content.replace("\n", " ").replace("\r", "").strip()
    try:
        parsed = json.loads(sanitized)
    except json.JSONDecodeError as e:
        if "{" in sanitized and "}" not in sanitized:
            try:
                parsed = json.loads(sanitized + "}")
                logger.info("Parsed truncated JSON after appending a closing brace")
            except json.JSONDecodeError as e2:
                raise TransactionParseError(
                    f"Failed to parse truncated JSON response: {e2}"
                ) from e2
        else:
            raise TransactionParseError(
                f"Failed to parse JSON response: {e}. Received: {content[:200]}"
            ) from e

    if not isinstance(parsed, dict):
        raise TransactionParseError(
            f"Expected a JSON object, got {type(parsed).__name__}"
        )
    return parsed


def _parse_reasoning_number(text: str) -> int | None:
    """Parse "358.333,33" (dot thousands, comma decimals) as an integer."""
    normalized = text.replace(".", "").replace(",", ".")
    if not normalized.strip("+-"):
        return None
    return parse_split_amount(normalized)


def find_reasoning_mismatches(
    parsed: ParsedTransaction, members: list[Member], tolerance: int = 10
) -> list[str]:
    """
    Compare the FINAL AMOUNTS section of the reasoning with the split map.

    Lines are matched to members by display name. Only members that appear
    in both places are compared.

    Returns:
        Human-readable descriptions of each mismatch
    """
    if not parsed.reasoning:
        return []

    section = _FINAL_AMOUNTS_SECTION.search(parsed.reasoning)
    if not section:
        return []

    reasoning_amounts: dict[str, int] = {}
    for label, number in _REASONING_AMOUNT.findall(section.group(0)):
        amount = _parse_reasoning_number(number)
        if amount is None:
            continue
        for member in members:
            if member.display_name and member.display_name in label:
                reasoning_amounts[member.id] = amount
                break

    mismatches = []
    for member_id, value in parsed.splits.items():
        expected = reasoning_amounts.get(member_id)
        actual = parse_split_amount(value)
        if expected is not None and abs(expected - actual) > tolerance:
            mismatches.append(
                f"Member {member_id} has {actual} in splits but {expected} in reasoning"
            )
    return mismatches


class TransactionParser:
    """Language-model parser that turns free text into a ParsedTransaction."""

    def __init__(
        self, api_key: str, model: str = "gpt-4o-mini", base_url: str | None = None
    ):
        """Initialize the parser. ``base_url`` selects a compatible provider."""
        self.client = OpenAI(api_key=api_key, base_url=base_url)
        self.model = model

    def parse_transaction(
        self,
        message: str,
        fund: Fund,
        members: list[Member],
        current_user_id: str | None = None,
        now: datetime | None = None,
    ) -> ParsedTransaction:
        """
        Parse a transaction description with the language model.

        Args:
            message: The user's free-text description
            fund: Fund the transaction belongs to
            members: Fund member records (names are used for matching)
            current_user_id: The acting user, assumed payer when none is named
            now: Timestamp shown to the model (defaults to now)

        Returns:
            Parsed transaction. Fields the model got wrong are left empty
            rather than raising.

        Raises:
            ParserAPIError: If the provider request fails
            TransactionParseError: If the reply is not a JSON object
        """
        current_user = next((m for m in members if m.id == current_user_id), None)
        system_prompt = build_system_prompt(fund, members, current_user, now or datetime.now())

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": message},
                ],
                temperature=0.2,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            raise ParserAPIError(f"Transaction parser request failed: {e}") from e

        if not response.choices:
            raise ParserAPIError("Transaction parser returned no choices")

        choice = response.choices[0]
        content = choice.message.content or ""
        if choice.finish_reason == "length":
            logger.warning("Parser response was truncated by the token limit")

        parsed = ParsedTransaction.from_payload(parse_json_content(content))

        logger.info(
            f"Parsed '{message[:40]}' -> payer {parsed.payer}, "
            f"total {parsed.total_amount}, {len(parsed.splits)} splits"
        )

        for mismatch in find_reasoning_mismatches(parsed, members):
            logger.warning(f"Inconsistent parser reasoning: {mismatch}")

        return parsed
