"""Client-side history of agent rounds, one per user prompt."""

import logging
import uuid
from typing import (
    Dict,
    Iterator,
    List,
    Tuple,
)

from convoiq.core.schema import (
    AgentMessage,
    ConversationRound,
    EditModes,
)

logger = logging.getLogger(__name__)


class ConversationRoundStore:
    """
    Ordered, append-only collection of :class:`ConversationRound`.

    Rounds are never removed and a round's messages never shrink or move: new messages are
    appended, and the only in-place change allowed is replacing the text of a streamed assistant
    message with a longer version of itself.
    """

    def __init__(self) -> None:
        self._rounds: List[ConversationRound] = []
        self._by_id: Dict[str, ConversationRound] = {}

    def __len__(self) -> int:
        return len(self._rounds)

    def __iter__(self) -> Iterator[ConversationRound]:
        return iter(self._rounds)

    @property
    def rounds(self) -> Tuple[ConversationRound, ...]:
        return tuple(self._rounds)

    @property
    def latest(self) -> ConversationRound | None:
        return self._rounds[-1] if self._rounds else None

    def start_round(self, user_prompt: str, edit_modes: EditModes) -> ConversationRound:
        """Open a new, empty round for *user_prompt* with a snapshot of *edit_modes*."""
        round_ = ConversationRound(
            id=f"round-{uuid.uuid4().hex[:12]}",
            user_prompt=user_prompt,
            edit_modes=edit_modes.model_copy(),
        )
        self._rounds.append(round_)
        self._by_id[round_.id] = round_
        return round_

    def get(self, round_id: str) -> ConversationRound:
        try:
            return self._by_id[round_id]
        except KeyError as exc:
            raise KeyError(f"Unknown round '{round_id}'") from exc

    def append_message(self, round_id: str, message: AgentMessage) -> None:
        """Append *message* to the end of the round.  Ids must be unique within the round."""
        round_ = self.get(round_id)
        if any(existing.id == message.id for existing in round_.messages):
            raise ValueError(f"Message '{message.id}' already exists in round '{round_id}'")
        round_.messages.append(message)

    def replace_content(self, round_id: str, message_id: str, content: str) -> AgentMessage:
        """Swap the content of message *message_id* in place and return the new message."""
        round_ = self.get(round_id)
        for position, existing in enumerate(round_.messages):
            if existing.id == message_id:
                updated = existing.model_copy(update={"content": content})
                round_.messages[position] = updated
                return updated
        raise KeyError(f"Unknown message '{message_id}' in round '{round_id}'")
