"""Terminal client for the ConvoIQ agent API."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import (
    Any,
    Dict,
    Tuple,
)

import httpx

from convoiq.client.rounds import ConversationRoundStore
from convoiq.client.stream import (
    RoundStreamConsumer,
    SSEParser,
)
from convoiq.common import (
    AnsiColors,
    colored_print,
    shorten,
)
from convoiq.core.events import ProtocolError
from convoiq.core.schema import (
    ComponentDraft,
    EditModes,
    MessageKind,
)

logger = logging.getLogger(__name__)

HELP_TEXT = """\
Commands:
  /modes [prompt] [data] [ui]  set the enabled edit modes (no argument shows them)
  /show                        print the current draft
  /history                     print all rounds of this session
  /publish [path]              write the current draft to a JSON file
  exit | quit                  leave"""


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    import signal  # pylint: disable=import-outside-toplevel

    # Ensure SIGINT breaks out of slow system calls such as read()
    signal.siginterrupt(signal.SIGINT, True)

    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def parse_modes(words: list[str]) -> EditModes:
    """Build edit modes from words such as ``prompt``, ``data`` and ``ui``."""
    chosen = {word.lower() for word in words}
    unknown = chosen - {"prompt", "data", "ui"}
    if unknown:
        raise ValueError(f"Unknown edit mode(s): {', '.join(sorted(unknown))}")
    return EditModes(
        edit_prompt="prompt" in chosen, edit_data="data" in chosen, edit_ui_code="ui" in chosen
    )


class AgentSession:
    """
    One interactive refinement session against a single component and conversation.

    Keeps the current draft and the round history; each prompt becomes a new round that is
    filled live from the event stream.
    """

    def __init__(
        self,
        api_url: str,
        component_id: str,
        conversation_id: str,
        component_title: str = "",
        conversation_title: str = "",
        draft: ComponentDraft | None = None,
        edit_modes: EditModes | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.component_id = component_id
        self.conversation_id = conversation_id
        self.component_title = component_title
        self.conversation_title = conversation_title
        self.draft = draft or ComponentDraft()
        self.edit_modes = edit_modes or EditModes(
            edit_prompt=True, edit_data=True, edit_ui_code=True
        )
        self.rounds = ConversationRoundStore()
        self._timeout = httpx.Timeout(timeout, connect=10.0)
        self._transport = transport

    def _apply_state(self, draft: ComponentDraft) -> None:
        self.draft = draft

    def build_request(self, prompt: str) -> Dict[str, Any]:
        return {
            "componentId": self.component_id,
            "componentTitle": self.component_title,
            "conversationId": self.conversation_id,
            "conversationTitle": self.conversation_title,
            "userPrompt": prompt,
            "currentState": self.draft.to_wire(),
            "editModes": self.edit_modes.model_dump(by_alias=True),
        }

    def run_prompt(
        self, prompt: str, max_retries: int = 5, echo: bool = True
    ) -> RoundStreamConsumer:
        """Send *prompt* to the agent, fold the streamed events into a new round and return it."""
        round_ = self.rounds.start_round(prompt, self.edit_modes)
        consumer = RoundStreamConsumer(self.rounds, round_.id, on_state_change=self._apply_state)
        parser = SSEParser()

        for attempt in range(max_retries):
            try:
                with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                    with client.stream(
                        "POST", f"{self.api_url}/RunAgent", json=self.build_request(prompt)
                    ) as response:
                        response.raise_for_status()
                        for line in response.iter_lines():
                            event = parser.feed_line(line)
                            if event is None:
                                continue
                            name, data = event
                            consumer.apply(name, data)
                            if echo:
                                render_event(name, data)
                if not consumer.finished:
                    consumer.fail("Stream ended before the agent finished")
                return consumer
            except httpx.ConnectError as exc:
                # On connection refused, retry with exponential backoff
                if attempt < max_retries - 1:
                    retry_delay = 0.5 * (2**attempt)
                    logger.info(
                        "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                        retry_delay,
                        attempt + 1,
                        max_retries,
                    )
                    time.sleep(retry_delay)
                    continue
                logger.error("API request error: %s", exc)
                consumer.fail(f"Error connecting to API: {exc}")
                return consumer
            except (httpx.HTTPError, ProtocolError) as exc:
                logger.error("Agent stream failed: %s", exc)
                consumer.fail(f"Agent request failed: {exc}")
                return consumer
            except (KeyError, ValueError) as exc:
                # Malformed event payload (missing field, duplicate id, invalid draft)
                logger.error("Malformed agent event: %r", exc)
                consumer.fail(f"Malformed agent event: {exc!r}")
                return consumer

        return consumer

    def publish(self, path: Path) -> Path:
        """Write the current draft to *path* as JSON."""
        path.write_text(json.dumps(self.draft.to_wire(), indent=2), encoding="utf-8")
        return path


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
def render_event(name: str, data: Dict[str, Any]) -> None:
    """Print one streamed event."""
    if name == "message_start":
        colored_print("\n🤖 ", AnsiColors.YELLOW, end="", flush=True)
    elif name == "message_chunk":
        print(data["delta"], end="", flush=True)
    elif name == "message_complete":
        print()
    elif name == "tool_call":
        args = data.get("args")
        args_text = args if isinstance(args, str) else json.dumps(args)
        colored_print(f"🔧 {data['toolName']}({shorten(args_text, 120)})", AnsiColors.BLUE)
    elif name == "tool_result":
        color = AnsiColors.GREEN if data.get("success") else AnsiColors.RED
        colored_print(f"   ↳ {shorten(json.dumps(data.get('result')), 160)}", color)
    elif name == "agent_complete":
        if data.get("warning"):
            colored_print(f"⚠️ {data['warning']}", AnsiColors.YELLOW)
        elif data.get("success"):
            colored_print("✓ Agent completed successfully", AnsiColors.GREEN)
    elif name == "error":
        colored_print(f"✗ {data.get('message')}", AnsiColors.RED)


def print_draft(draft: ComponentDraft) -> None:
    """Print the three parts of *draft*."""
    for title, value in (
        ("Prompt", draft.prompt),
        ("Structured Output", draft.structured_output),
        ("UI Code", draft.ui_code),
    ):
        colored_print(f"── {title} ──", AnsiColors.BLUE)
        print(value or "(empty)")


def print_history(rounds: ConversationRoundStore) -> None:
    """Print every round and its messages."""
    for number, round_ in enumerate(rounds, start=1):
        modes = ", ".join(round_.edit_modes.enabled_labels()) or "read-only"
        colored_print(f"\n#{number} [{modes}] {round_.user_prompt}", AnsiColors.BLUE)
        for message in round_.messages:
            if message.kind is MessageKind.ERROR:
                colored_print(f"  ✗ {message.content}", AnsiColors.RED)
            elif message.kind is MessageKind.TOOL_CALL:
                colored_print(f"  🔧 {message.content}", AnsiColors.GREY)
            elif message.kind is MessageKind.TOOL_RESULT:
                colored_print(f"     ↳ {shorten(message.content, 100)}", AnsiColors.GREY)
            elif message.content:
                print(f"  {shorten(message.content, 300)}")


def run_cli(session: AgentSession) -> None:
    """Run the interactive refinement loop."""
    colored_print(
        "\n🔮 ConvoIQ agent - type a request, /help for commands, 'exit' to quit", AnsiColors.GREEN
    )
    while True:
        modes = ", ".join(session.edit_modes.enabled_labels()) or "read-only"
        colored_print(f"\n🧑 You [{modes}]: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if not user_msg:
            continue
        if user_msg.lower() in {"exit", "quit"}:
            break

        command, *rest = user_msg.split()
        if command == "/help":
            print(HELP_TEXT)
        elif command == "/modes":
            if rest:
                try:
                    session.edit_modes = parse_modes(rest)
                except ValueError as exc:
                    colored_print(str(exc), AnsiColors.RED)
            colored_print(
                f"Edit modes: {', '.join(session.edit_modes.enabled_labels()) or 'none'}",
                AnsiColors.YELLOW,
            )
        elif command == "/show":
            print_draft(session.draft)
        elif command == "/history":
            print_history(session.rounds)
        elif command == "/publish":
            target = Path(rest[0]) if rest else Path(f"{session.component_id}.json")
            colored_print(f"Draft written to {session.publish(target)}", AnsiColors.GREEN)
        elif command.startswith("/"):
            colored_print(f"Unknown command {command}. Try /help.", AnsiColors.RED)
        else:
            session.run_prompt(user_msg)
