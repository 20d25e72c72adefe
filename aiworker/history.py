"""aiworker/history.py

Rolling conversation window kept between turns.

Only user messages and final answers are retained; the tool traffic of a
turn lives in the orchestrator's working copy and is dropped afterwards to
keep the context small.  The system message is rebuilt every turn, so it is
never stored here.
"""

from __future__ import annotations

# Local Modules
from aiworker.models import FinalAnswer, Message, Role


class ConversationHistory:
    """Stores the last N messages of a conversation.

    Args:
        max_messages: Maximum number of messages to retain.  20 allows about
            ten exchanges before the oldest roll off.
    """

    def __init__(self, max_messages: int = 20) -> None:
        self.max_messages = max_messages
        self._messages: list[Message] = []

    def add_message(self, role: Role, content: str) -> None:
        if role == "system":
            raise ValueError("system messages are composed per turn and not stored in history")
        self._messages.append(Message(role=role, content=content))
        # Oldest first out
        overflow = len(self._messages) - self.max_messages
        if overflow > 0:
            del self._messages[:overflow]

    def record_turn(self, user_text: str, answer: FinalAnswer) -> None:
        """Append a finished exchange.  Error answers are not kept."""
        if answer.is_error:
            return
        self.add_message("user", user_text)
        self.add_message("assistant", answer.content)

    def messages(self) -> list[Message]:
        """Return a copy of the window, oldest first."""
        return list(self._messages)

    def clear(self) -> None:
        self._messages.clear()

    def message_count(self) -> int:
        return len(self._messages)
