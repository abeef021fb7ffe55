"""
Chat relay for the portfolio assistant.

A question and the two context documents go to an OpenAI-compatible chat
completion API (Groq by default) with streaming enabled. Fragments are
passed on as server-sent-event frames in arrival order, with a short pause
after each one, and the stream always finishes with the [DONE] sentinel.
"""

import asyncio
import json
import logging
from datetime import date
from typing import Any, AsyncIterator, Optional

from fastapi import Request
from openai import AsyncOpenAI

from app.config import Settings
from app.metrics import record_chat_request

logger = logging.getLogger(__name__)

DONE_FRAME = "data: [DONE]\n\n"
APOLOGY = "Sorry, I encountered an error. Please try again."

SYSTEM_PROMPT = """You are {owner}'s AI assistant. You have access to his professional background from LinkedIn and resume data.

**Your personality:**
- Act naturally and conversationally, like a helpful colleague
- Keep responses crisp and precise - avoid long lists and unnecessary details
- If a user's question is unclear or too broad, ask follow-up questions to understand what they really want to know
- Be engaging and curious about their needs

**Your knowledge:**
- You know about {owner}'s skills, experience, projects, education, and achievements
- Use this information naturally without mentioning "LinkedIn" or "Resume" sources
- Focus on being helpful rather than explaining where information comes from
- Keep the timeline in mind: use past tense for previous experiences and present tense for ongoing ones

**Response style:**
- Keep it simple and direct
- If someone asks about skills, give 3-4 key ones, not a long list
- If they ask about projects, highlight 2-3 most relevant ones
- Ask clarifying questions when needed: "What specific aspect are you interested in?" or "Are you looking for technical skills or project experience?"

Current date: {today}"""


class ChatUpstreamError(Exception):
    """The completion API cannot be reached or is not configured."""


def format_fragment(content: str) -> str:
    """Frame one text fragment the way the browser client parses it."""
    payload = {"choices": [{"delta": {"content": content}}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _delta_content(chunk: Any) -> str:
    """Text carried by one streamed chunk, or "" for chunks without any."""
    try:
        return chunk.choices[0].delta.content or ""
    except (AttributeError, IndexError, TypeError):
        logger.debug("Skipping malformed completion chunk")
        return ""


class ChatRelay:
    """
    Relays portfolio questions to the completion API.

    Args:
        settings: Application settings (model, credentials, pacing)
        client: Optional pre-built AsyncOpenAI-compatible client; built
            lazily from settings when omitted
    """

    def __init__(self, settings: Settings, client: Optional[Any] = None) -> None:
        self.settings = settings
        self._client = client
        self._owns_client = False

    def _get_client(self):
        if self._client is None:
            if not self.settings.GROQ_API_KEY:
                raise ChatUpstreamError("GROQ_API_KEY environment variable is not set")
            self._client = AsyncOpenAI(
                api_key=self.settings.GROQ_API_KEY,
                base_url=self.settings.GROQ_BASE_URL,
                timeout=self.settings.HTTP_TIMEOUT_SECONDS,
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.close()
            self._client = None
            self._owns_client = False

    def system_prompt(self) -> str:
        return SYSTEM_PROMPT.format(
            owner=self.settings.OWNER_NAME,
            today=date.today().isoformat(),
        )

    def build_messages(self, question: str, linkedin_context: Any, resume_context: Any) -> list:
        user_turn = (
            f"Here's the LinkedIn context: {json.dumps(linkedin_context, ensure_ascii=False)}"
            f"\n\nHere's the Resume context: {json.dumps(resume_context, ensure_ascii=False)}"
            f"\n\nUser question: {question}"
        )
        return [
            {"role": "system", "content": self.system_prompt()},
            {"role": "user", "content": user_turn},
        ]

    async def stream(
        self,
        question: str,
        linkedin_context: Any,
        resume_context: Any,
    ) -> AsyncIterator[str]:
        """
        Yield SSE frames for the answer, ending with DONE_FRAME.

        An upstream failure at any point, before or after the first
        fragment, is replaced by a single apology fragment.
        """
        fragments = 0
        try:
            client = self._get_client()
            completion = await client.chat.completions.create(
                model=self.settings.CHAT_MODEL,
                messages=self.build_messages(question, linkedin_context, resume_context),
                temperature=self.settings.CHAT_TEMPERATURE,
                max_tokens=self.settings.CHAT_MAX_TOKENS,
                top_p=self.settings.CHAT_TOP_P,
                stream=True,
            )
            logger.info("Completion stream opened")

            # Closes the upstream response on faults and client disconnects too
            async with completion:
                async for chunk in completion:
                    content = _delta_content(chunk)
                    if not content:
                        continue
                    fragments += 1
                    yield format_fragment(content)
                    if self.settings.STREAM_DELAY_SECONDS > 0:
                        await asyncio.sleep(self.settings.STREAM_DELAY_SECONDS)
        except Exception as e:
            logger.error(
                f"Chat completion failed after {fragments} fragments: {e}",
                exc_info=True,
            )
            record_chat_request("upstream_error")
            yield format_fragment(APOLOGY)
        else:
            logger.info(f"Completion stream finished: {fragments} fragments")
            record_chat_request("streamed")

        yield DONE_FRAME


def get_chat_relay(request: Request) -> ChatRelay:
    """Dependency returning the relay created by the application lifespan."""
    return request.app.state.chat_relay
