"""
Grounding-transcript collaborator.

The agent only ever needs two things from the conversation storage layer: the metadata of the
grounding conversation (shown to the model before the first turn) and its full readable transcript
(sliced by the ``get_conversation_transcript`` tool).  :class:`TranscriptStore` is that narrow
contract; :class:`HttpTranscriptStore` talks to the storage service, :class:`InMemoryTranscriptStore`
backs tests and offline sessions.
"""

import logging
import re
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Dict,
    Mapping,
)

import httpx
from pydantic import BaseModel

from convoiq.core.schema import ConversationMetadata

logger = logging.getLogger(__name__)

_S3_URL = re.compile(r"^s3://([^/]+)/(.+)$")


class TranscriptStoreError(RuntimeError):
    """Raised when a conversation or its transcript cannot be fetched."""


def _json_body(response: httpx.Response, what: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:  # JSONDecodeError, or undecodable bytes
        raise TranscriptStoreError(f"Failed to read {what}: response is not JSON") from exc


class Transcript(BaseModel):
    """Full readable transcript of a conversation plus its metadata."""

    text: str
    metadata: ConversationMetadata


class TranscriptStore(ABC):
    """Read-only access to grounding conversations."""

    @abstractmethod
    async def fetch_metadata(self, conversation_id: str) -> ConversationMetadata:
        """Return metadata for *conversation_id*."""

    @abstractmethod
    async def fetch_transcript(self, conversation_id: str) -> Transcript:
        """Return the full readable transcript for *conversation_id*."""


class HttpTranscriptStore(TranscriptStore):
    """
    Transcript store backed by the conversation storage REST API.

    ``GET {base_url}/Conversation/{id}`` returns the conversation record.  Its readable-transcript
    link is either fetched directly (``http(s)://``) or, for object-storage links (``s3://``),
    exchanged for a view URL through ``GET {base_url}/GetViewUrl?key=...`` first.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _get_record(self, client: httpx.AsyncClient, conversation_id: str) -> Dict[str, Any]:
        response = await client.get(f"{self._base_url}/Conversation/{conversation_id}")
        if response.status_code >= 400:
            raise TranscriptStoreError(
                f"Failed to fetch conversation: {response.status_code} {response.reason_phrase}"
            )
        record = _json_body(response, "conversation")
        if not isinstance(record, dict):
            raise TranscriptStoreError(
                f"Failed to fetch conversation: expected an object, got {type(record).__name__}"
            )
        return record

    async def _resolve_link(self, client: httpx.AsyncClient, link: str) -> str:
        match = _S3_URL.match(link)
        if match is None:
            return link
        _, key = match.groups()
        response = await client.get(f"{self._base_url}/GetViewUrl", params={"key": key})
        if response.status_code >= 400:
            raise TranscriptStoreError(
                f"Failed to get a view URL for {link}: {response.status_code}"
            )
        body = _json_body(response, "view URL")
        if not isinstance(body, dict) or not body.get("viewUrl"):
            raise TranscriptStoreError(f"Failed to get a view URL for {link}: no viewUrl returned")
        return body["viewUrl"]

    async def fetch_metadata(self, conversation_id: str) -> ConversationMetadata:
        try:
            async with self._client() as client:
                record = await self._get_record(client, conversation_id)
        except httpx.HTTPError as exc:
            raise TranscriptStoreError(f"Failed to fetch conversation: {exc}") from exc
        return ConversationMetadata.from_record(record)

    async def fetch_transcript(self, conversation_id: str) -> Transcript:
        try:
            async with self._client() as client:
                record = await self._get_record(client, conversation_id)
                link = record.get("convo_readable_transcript_s3_link")
                if not link:
                    raise TranscriptStoreError(
                        f"Conversation '{conversation_id}' has no readable transcript"
                    )
                url = await self._resolve_link(client, link)
                logger.debug("Fetching transcript for %s from %s", conversation_id, url)
                response = await client.get(url)
                if response.status_code >= 400:
                    raise TranscriptStoreError(
                        f"Failed to read transcript: {response.status_code} "
                        f"{response.reason_phrase}"
                    )
        except httpx.HTTPError as exc:
            raise TranscriptStoreError(f"Failed to fetch transcript: {exc}") from exc

        if not response.text:
            raise TranscriptStoreError("Failed to read transcript: empty document")
        return Transcript(text=response.text, metadata=ConversationMetadata.from_record(record))


class InMemoryTranscriptStore(TranscriptStore):
    """Transcript store holding conversations in a dict (tests, offline use)."""

    def __init__(self, conversations: Mapping[str, Transcript] | None = None) -> None:
        self._conversations: Dict[str, Transcript] = dict(conversations or {})

    def add(self, conversation_id: str, text: str, **metadata: Any) -> None:
        """Store *text* under *conversation_id* with optional metadata fields."""
        self._conversations[conversation_id] = Transcript(
            text=text, metadata=ConversationMetadata(**metadata)
        )

    def _get(self, conversation_id: str) -> Transcript:
        try:
            return self._conversations[conversation_id]
        except KeyError as exc:
            raise TranscriptStoreError(f"Unknown conversation '{conversation_id}'") from exc

    async def fetch_metadata(self, conversation_id: str) -> ConversationMetadata:
        return self._get(conversation_id).metadata

    async def fetch_transcript(self, conversation_id: str) -> Transcript:
        return self._get(conversation_id)
