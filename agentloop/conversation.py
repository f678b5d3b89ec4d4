"""Conversation state — append-only, role-tagged turns."""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Iterator, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    role: Role
    content: Union[str, Any]  # text, or a structured payload

    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, ensure_ascii=False)

    def to_message(self) -> dict:
        return {"role": self.role.value, "content": self.text()}


@dataclass(frozen=True)
class HistoryMessage:
    """One message as supplied by a chat-platform adapter."""
    author_id: str
    text: str
    timestamp: float


class Conversation:
    """Chronological sequence of turns. Turns are only ever appended."""

    def __init__(self, turns: Optional[Iterable[Turn]] = None):
        self._turns: List[Turn] = list(turns or [])

    @classmethod
    def from_prompt(cls, text: str) -> "Conversation":
        return cls([Turn(Role.USER, text)])

    @classmethod
    def from_history(cls, messages: Iterable[HistoryMessage], self_id: str) -> "Conversation":
        """Messages authored by ``self_id`` become assistant turns, all others user turns.

        Ordered by timestamp; the sort is stable so ties keep the source order.
        """
        ordered = sorted(messages, key=lambda m: m.timestamp)
        turns = [
            Turn(Role.ASSISTANT if m.author_id == self_id else Role.USER, m.text)
            for m in ordered
        ]
        logger.debug(f"Ingested {len(turns)} history message(s)")
        return cls(turns)

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def add_user(self, content) -> Turn:
        turn = Turn(Role.USER, content)
        self._turns.append(turn)
        return turn

    def add_assistant(self, content) -> Turn:
        turn = Turn(Role.ASSISTANT, content)
        self._turns.append(turn)
        return turn

    @property
    def turns(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    def last_assistant_text(self) -> str:
        for turn in reversed(self._turns):
            if turn.role is Role.ASSISTANT:
                return turn.text()
        return ""

    def to_messages(self) -> List[dict]:
        return [t.to_message() for t in self._turns]

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(tuple(self._turns))
