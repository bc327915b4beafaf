"""Interactive UI components for picking members and confirming drafts."""

import logging
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from ..models import Member

logger = logging.getLogger(__name__)


def fuzzy_match(query: str, text: str) -> bool:
    """
    Fuzzy match: all characters in query must appear in order in text.

    Example:
        query="mnh" matches "Minh"
        query="lh" matches "Linh"
    """
    query_idx = 0
    for char in text:
        if query_idx < len(query) and char == query[query_idx]:
            query_idx += 1
    return query_idx == len(query)


def member_label(member: Member) -> str:
    """Display label used for completion and lookup."""
    return f"{member.display_name} ({member.id})"


class MemberCompleter(Completer):
    """Fuzzy search completer for fund members."""

    def __init__(self, members: list[Member]):
        """Initialize the completer with the members to choose from."""
        self.members = members
        self.label_to_id = {member_label(m): m.id for m in members}

    def get_completions(self, document: Document, complete_event: Any):
        """Get fuzzy-matched completions."""
        query = document.text.lower()

        for label in self.label_to_id:
            if not query or fuzzy_match(query, label.lower()):
                yield Completion(
                    text=label,
                    start_position=-len(document.text),
                    display=label,
                )


def select_member_interactive(members: list[Member], prompt: str = "Member") -> str | None:
    """
    Interactive member selection with fuzzy search.

    Args:
        members: Members to choose from
        prompt: Prompt label

    Returns:
        Selected member id, or None to skip
    """
    print("   Type to search, press Enter to confirm, Ctrl+C to skip\n")

    completer = MemberCompleter(members)
    session: PromptSession[str] = PromptSession(completer=completer)

    try:
        while True:
            result = session.prompt(f"{prompt}: ", complete_while_typing=True)

            if not result:
                return None

            member_id = completer.label_to_id.get(result)
            if member_id is None and result in {m.id for m in members}:
                member_id = result
            if member_id:
                logger.info(f"User selected member: {member_id}")
                return member_id

            print("❌ Unknown member. Please select from the list or press Tab to complete.")

    except KeyboardInterrupt:
        print("\n⏭️  Skipped")
        return None
    except EOFError:
        return None


def confirm(question: str) -> bool:
    """Simple yes/no confirmation, defaulting to yes."""
    response = input(f"   {question} [Y/n] ").strip().lower()
    return response in ("", "y", "yes")
