"""Tests for the transcript collaborators, with the storage service mocked by httpx."""

import httpx
import pytest

from convoiq.collaborators.transcripts import (
    HttpTranscriptStore,
    InMemoryTranscriptStore,
    TranscriptStoreError,
)

pytestmark = pytest.mark.asyncio

BASE_URL = "http://store.test"

RECORD = {
    "convo_title": "Weekly sync",
    "video_duration_seconds": 750,
    "word_count": 1800,
    "char_count": 9000,
    "num_speakers": 3,
}


def _store(handler) -> HttpTranscriptStore:
    return HttpTranscriptStore(BASE_URL, transport=httpx.MockTransport(handler))


async def test_metadata_from_conversation_record() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/Conversation/conv-1"
        return httpx.Response(200, json=RECORD)

    metadata = await _store(handler).fetch_metadata("conv-1")

    assert metadata.title == "Weekly sync"
    assert metadata.duration_minutes == "12.5"
    assert metadata.word_count == 1800
    assert metadata.speakers == 3


async def test_transcript_from_http_link() -> None:
    record = dict(RECORD, convo_readable_transcript_s3_link="http://files.test/t.txt")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "files.test":
            return httpx.Response(200, text="A: hi\nB: hello")
        return httpx.Response(200, json=record)

    transcript = await _store(handler).fetch_transcript("conv-1")

    assert transcript.text == "A: hi\nB: hello"
    assert transcript.metadata.title == "Weekly sync"


async def test_s3_link_is_exchanged_for_view_url() -> None:
    record = dict(RECORD, convo_readable_transcript_s3_link="s3://bucket/transcripts/conv-1.txt")
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        if request.url.path == "/GetViewUrl":
            assert request.url.params["key"] == "transcripts/conv-1.txt"
            return httpx.Response(200, json={"viewUrl": "http://files.test/signed"})
        if request.url.host == "files.test":
            return httpx.Response(200, text="signed transcript")
        return httpx.Response(200, json=record)

    transcript = await _store(handler).fetch_transcript("conv-1")

    assert transcript.text == "signed transcript"
    assert seen == ["/Conversation/conv-1", "/GetViewUrl", "/signed"]


async def test_missing_conversation_raises() -> None:
    store = _store(lambda request: httpx.Response(404))

    with pytest.raises(TranscriptStoreError, match="404"):
        await store.fetch_metadata("nope")


async def test_record_without_link_raises() -> None:
    store = _store(lambda request: httpx.Response(200, json=RECORD))

    with pytest.raises(TranscriptStoreError, match="no readable transcript"):
        await store.fetch_transcript("conv-1")


async def test_empty_transcript_raises() -> None:
    record = dict(RECORD, convo_readable_transcript_s3_link="http://files.test/t.txt")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "files.test":
            return httpx.Response(200, text="")
        return httpx.Response(200, json=record)

    with pytest.raises(TranscriptStoreError, match="empty document"):
        await _store(handler).fetch_transcript("conv-1")


async def test_transport_error_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TranscriptStoreError, match="connection refused"):
        await _store(handler).fetch_transcript("conv-1")


async def test_in_memory_store() -> None:
    store = InMemoryTranscriptStore()
    store.add("conv-1", "text", title="Standup", speakers=2)

    assert (await store.fetch_transcript("conv-1")).text == "text"
    assert (await store.fetch_metadata("conv-1")).title == "Standup"
    with pytest.raises(TranscriptStoreError, match="Unknown conversation"):
        await store.fetch_metadata("conv-2")


@pytest.mark.parametrize("body", [b"<html>spa</html>", b"null", b'["not", "a", "record"]'])
async def test_unreadable_record_raises_store_error(body: bytes) -> None:
    """A conversation body that is not a JSON object is a store error, not a crash."""
    store = _store(lambda request: httpx.Response(200, content=body))

    with pytest.raises(TranscriptStoreError, match="Failed to"):
        await store.fetch_metadata("conv-1")
    with pytest.raises(TranscriptStoreError):
        await store.fetch_transcript("conv-1")


async def test_view_url_response_without_url_raises() -> None:
    record = dict(RECORD, convo_readable_transcript_s3_link="s3://bucket/t.txt")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/GetViewUrl":
            return httpx.Response(200, json={"error": "no such key"})
        return httpx.Response(200, json=record)

    with pytest.raises(TranscriptStoreError, match="no viewUrl"):
        await _store(handler).fetch_transcript("conv-1")
