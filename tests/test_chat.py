"""
Tests for the chat relay and the /api/chat endpoints.

The completion API is replaced by a fake client whose
`chat.completions.create` returns an async stream of chunk objects.
"""

import json
from types import SimpleNamespace

import pytest

from app.chat import APOLOGY, DONE_FRAME, ChatRelay, format_fragment, get_chat_relay
from app.main import app
from conftest import make_settings


LINKEDIN = {"profile": {"name": "Yatharth Bisht", "skills": ["Python"]}}
RESUME = {"projects": [{"name": "Portfolio IDE"}]}


def chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeStream:
    """Async stream of chunks that records whether it was closed."""

    def __init__(self, items):
        self.items = items
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def close(self):
        self.closed = True

    async def __aiter__(self):
        for item in self.items:
            if isinstance(item, Exception):
                raise item
            yield item


class FakeCompletions:
    """Streams the given items; an exception instance is raised when reached."""

    def __init__(self, items, fail_on_create=None):
        self.items = items
        self.fail_on_create = fail_on_create
        self.calls = []
        self.streams = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.fail_on_create is not None:
            raise self.fail_on_create
        stream = FakeStream(self.items)
        self.streams.append(stream)
        return stream


def fake_client(items, fail_on_create=None):
    completions = FakeCompletions(items, fail_on_create)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def parse_frames(body: str) -> list:
    """Split a streamed body into decoded fragments plus the DONE marker."""
    frames = []
    for raw in body.split("\n\n"):
        if not raw:
            continue
        assert raw.startswith("data: ")
        data = raw[len("data: "):]
        if data == "[DONE]":
            frames.append("[DONE]")
        else:
            frames.append(json.loads(data)["choices"][0]["delta"]["content"])
    return frames


async def collect(relay, question="Who are you?"):
    return [frame async for frame in relay.stream(question, LINKEDIN, RESUME)]


@pytest.mark.asyncio
class TestChatRelay:
    """Test the fragment stream produced by ChatRelay."""

    async def test_streams_fragments_in_order(self):
        """Test upstream fragments are relayed in order and end with DONE."""
        client, _ = fake_client([chunk("Hi"), chunk(" there")])
        relay = ChatRelay(make_settings(), client=client)

        frames = await collect(relay)

        assert frames == [format_fragment("Hi"), format_fragment(" there"), DONE_FRAME]
        fragments = parse_frames("".join(frames))
        assert "".join(fragments[:-1]) == "Hi there"
        assert fragments[-1] == "[DONE]"

    async def test_request_carries_context_and_question(self):
        """Test the completion request has one system and one user turn."""
        client, completions = fake_client([chunk("ok")])
        relay = ChatRelay(make_settings(OWNER_NAME="Ada"), client=client)

        await collect(relay, "What did you build?")

        call = completions.calls[0]
        assert call["stream"] is True
        assert call["model"] == "gemma2-9b-it"
        assert call["max_tokens"] == 1024
        system, user = call["messages"]
        assert system["role"] == "system"
        assert "Ada's AI assistant" in system["content"]
        assert "Current date:" in system["content"]
        assert user["role"] == "user"
        assert user["content"].startswith(f"Here's the LinkedIn context: {json.dumps(LINKEDIN)}")
        assert f"Here's the Resume context: {json.dumps(RESUME)}" in user["content"]
        assert user["content"].endswith("User question: What did you build?")

    async def test_empty_and_malformed_chunks_are_skipped(self):
        """Test chunks without text produce no fragments."""
        client, _ = fake_client([
            chunk(None),
            SimpleNamespace(choices=[]),
            SimpleNamespace(),
            chunk("Hello"),
            chunk(""),
        ])
        relay = ChatRelay(make_settings(), client=client)

        frames = await collect(relay)

        assert parse_frames("".join(frames)) == ["Hello", "[DONE]"]

    async def test_upstream_error_before_streaming(self):
        """Test a failed request yields only the apology and DONE."""
        client, _ = fake_client([], fail_on_create=RuntimeError("rate limited"))
        relay = ChatRelay(make_settings(), client=client)

        frames = await collect(relay)

        assert parse_frames("".join(frames)) == [APOLOGY, "[DONE]"]

    async def test_upstream_error_mid_stream(self):
        """Test a fault after the first fragment still ends cleanly."""
        client, _ = fake_client([chunk("Hi"), ConnectionError("reset by peer")])
        relay = ChatRelay(make_settings(), client=client)

        frames = await collect(relay)

        assert parse_frames("".join(frames)) == ["Hi", APOLOGY, "[DONE]"]

    async def test_upstream_stream_closed_after_fault(self):
        """Test the upstream response is closed when it fails mid-stream."""
        client, completions = fake_client([chunk("Hi"), ConnectionError("reset by peer")])
        relay = ChatRelay(make_settings(), client=client)

        frames = await collect(relay)

        assert frames[-1] == DONE_FRAME
        assert completions.streams[0].closed is True

    async def test_upstream_stream_closed_after_success(self):
        """Test the upstream response is closed once fully relayed."""
        client, completions = fake_client([chunk("Hi")])
        relay = ChatRelay(make_settings(), client=client)

        await collect(relay)

        assert completions.streams[0].closed is True

    async def test_upstream_stream_closed_on_disconnect(self):
        """Test abandoning the relay after one fragment closes the upstream response."""
        client, completions = fake_client([chunk("Hi"), chunk(" there")])
        relay = ChatRelay(make_settings(), client=client)

        frames = relay.stream("Who are you?", LINKEDIN, RESUME)
        assert await frames.__anext__() == format_fragment("Hi")
        await frames.aclose()

        assert completions.streams[0].closed is True

    async def test_missing_api_key(self):
        """Test an unconfigured completion API answers with the apology."""
        relay = ChatRelay(make_settings(GROQ_API_KEY=None))

        frames = await collect(relay)

        assert parse_frames("".join(frames)) == [APOLOGY, "[DONE]"]

    async def test_fragments_are_paced(self, monkeypatch):
        """Test the relay sleeps once after each fragment."""
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr("app.chat.asyncio.sleep", fake_sleep)
        client, _ = fake_client([chunk("a"), chunk("b"), chunk("c")])
        relay = ChatRelay(make_settings(STREAM_DELAY_SECONDS=0.05), client=client)

        await collect(relay)

        assert delays == [0.05, 0.05, 0.05]


class TestChatEndpoint:
    """Test POST /api/chat and GET /api/chat/history."""

    @pytest.fixture
    def relay_client(self, client):
        fake, completions = fake_client([chunk("Hi"), chunk(" there")])
        app.dependency_overrides[get_chat_relay] = lambda: ChatRelay(make_settings(), client=fake)
        client.completions = completions
        return client

    def test_streams_answer(self, relay_client):
        """Test a valid request streams the fragments and the end marker."""
        response = relay_client.post("/api/chat", json={
            "message": "Hello?",
            "linkedinContext": LINKEDIN,
            "resumeContext": RESUME,
        })

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert parse_frames(response.text) == ["Hi", " there", "[DONE]"]

    def test_missing_context(self, relay_client):
        """Test a request without context is rejected before streaming."""
        response = relay_client.post("/api/chat", json={
            "message": "Hello?",
            "linkedinContext": LINKEDIN,
        })

        assert response.status_code == 400
        assert response.json() == {"detail": "Context data is required"}
        assert "data:" not in response.text
        assert relay_client.completions.calls == []

    def test_missing_message(self, relay_client):
        """Test a request without a question is rejected."""
        response = relay_client.post("/api/chat", json={
            "linkedinContext": LINKEDIN,
            "resumeContext": RESUME,
        })

        assert response.status_code == 400
        assert response.json() == {"detail": "Message is required"}
        assert relay_client.completions.calls == []

    def test_non_string_message(self, relay_client):
        """Test a question that is not a string is rejected."""
        response = relay_client.post("/api/chat", json={
            "message": 42,
            "linkedinContext": LINKEDIN,
            "resumeContext": RESUME,
        })

        assert response.status_code == 400

    def test_empty_context_object_is_accepted(self, relay_client):
        """Test context documents are opaque: an empty object is still context."""
        response = relay_client.post("/api/chat", json={
            "message": "Hello?",
            "linkedinContext": {},
            "resumeContext": {},
        })

        assert response.status_code == 200

    def test_history_is_empty(self, client):
        """Test chat history is empty when nothing was recorded."""
        response = client.get("/api/chat/history")

        assert response.status_code == 200
        assert response.json() == []

    def test_history_lists_stored_records(self, client, store):
        """Test stored chat records are returned with camelCase flags."""
        store.create_chat_message("Hi", is_user=True)

        response = client.get("/api/chat/history")

        data = response.json()
        assert len(data) == 1
        assert data[0]["message"] == "Hi"
        assert data[0]["isUser"] is True
        assert data[0]["id"] == 1
