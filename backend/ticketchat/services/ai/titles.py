"""
Chat session titles.

The title is generated from the first stored messages of a session, or from
the opening exchange when the session has none yet.
"""
from typing import Any, Dict, List, Optional

from supabase import Client

from ticketchat.core.logging import get_logger
from ticketchat.core.rate_limit import RateConfig
from ticketchat.services.ai.messages import ConversationMessage, SystemMessage, UserMessage
from ticketchat.services.ai.providers import ProviderAdapter, ProviderConfig

logger = get_logger(__name__)

TITLE_INSTRUCTION = (
    "Generate a concise, descriptive title that is 5-7 words long and summarizes the main topic "
    "of this chat conversation. Return ONLY the title text, nothing else. Do not use quotes."
)
DEFAULT_TITLE = "New Chat"
MAX_TITLE_CHARS = 100
CONTEXT_MESSAGES = 10
EXCERPT_CHARS = 200


def format_session_context(rows: List[Dict[str, Any]]) -> str:
    return "\n".join(
        f"{'User' if row.get('role') == 'user' else 'Assistant'}: {(row.get('content') or '')[:EXCERPT_CHARS]}"
        for row in rows
    )


def build_title_messages(
    context: str,
    user_message: Optional[str] = None,
    assistant_message: Optional[str] = None,
) -> List[ConversationMessage]:
    if context:
        prompt = f"Based on this conversation:\n{context}\n\nGenerate a concise title (5-7 words):"
    else:
        prompt = f'User asked: "{user_message}"\n'
        if assistant_message:
            prompt += f'Assistant responded: "{assistant_message[:EXCERPT_CHARS]}..."'
        prompt += "\n\nGenerate a concise title (5-7 words):"
    return [SystemMessage(content=TITLE_INSTRUCTION), UserMessage(content=prompt)]


def clean_title(text: Optional[str]) -> str:
    title = (text or "").strip() or DEFAULT_TITLE
    if title[0] in "\"'":
        title = title[1:]
    if title and title[-1] in "\"'":
        title = title[:-1]
    if len(title) > MAX_TITLE_CHARS:
        title = title[:MAX_TITLE_CHARS].strip() + "..."
    return title or DEFAULT_TITLE


class ChatTitleGenerator:
    def __init__(self, client: Client, adapter: ProviderAdapter):
        self.client = client
        self.adapter = adapter

    def session_context(self, session_id: str) -> str:
        response = (
            self.client.table("chat_messages")
            .select("role, content")
            .eq("session_id", session_id)
            .order("created_at")
            .limit(CONTEXT_MESSAGES)
            .execute()
        )
        return format_session_context(response.data or [])

    async def generate(
        self,
        provider_config: ProviderConfig,
        rate_config: Optional[RateConfig] = None,
        user_message: Optional[str] = None,
        assistant_message: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> str:
        """
        Title for a session or a first exchange.

        Raises:
            ValueError: neither stored messages nor a user message to work from
            ProviderError: the model call failed
        """
        context = self.session_context(session_id) if session_id else ""
        if not context and not user_message:
            raise ValueError("Either sessionId or userMessage is required")

        completion = await self.adapter.complete(
            provider_config,
            build_title_messages(context, user_message, assistant_message),
            rate_config=rate_config,
        )
        title = clean_title(completion.text)
        logger.info(
            "chat_title_generated",
            session_id=session_id,
            provider=provider_config.provider,
            from_session=bool(context),
            title_chars=len(title),
        )
        return title
