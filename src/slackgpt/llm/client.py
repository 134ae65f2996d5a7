"""OpenAI chat-completion wrapper.

Turns an ordered conversation into one system + user request and returns the
trimmed text of the first choice. Errors from the SDK are not wrapped.
"""

from typing import Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from ..errors import EmptyCompletionError, EmptyPromptError
from ..log import get_logger
from ..schemas.completion import CompletionSettings

logger = get_logger("completion_client")


class CompletionClient:
    """Safe to share between concurrent dispatches; holds no per-request state."""

    def __init__(self, client: AsyncOpenAI, settings: Optional[CompletionSettings] = None):
        self.client = client
        self.settings = settings or CompletionSettings()

    @classmethod
    def from_settings(cls, settings) -> "CompletionClient":
        client = AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            max_retries=settings.OPENAI_MAX_RETRIES,
            timeout=settings.OPENAI_TIMEOUT_SECONDS,
        )
        return cls(client, settings.completion_settings())

    def build_messages(self, conversation: Sequence[str]) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.settings.system_prompt},
            {"role": "user", "content": self.settings.separator.join(conversation)},
        ]

    async def get_response(self, conversation: Sequence[str], timeout: Optional[float] = None) -> str:
        """
        Send the conversation to the completion API and return the reply text.

        Raises EmptyPromptError without touching the network when the
        conversation has no fragments, and EmptyCompletionError when the API
        answers with zero choices. Anything the SDK raises propagates as is.
        Cancelling the awaiting task aborts the HTTP request.
        """
        if len(conversation) == 0:
            raise EmptyPromptError()

        request = {
            "model": self.settings.model,
            "messages": self.build_messages(conversation),
            "max_tokens": self.settings.max_tokens,
            "temperature": self.settings.temperature,
        }
        if timeout is not None:
            request["timeout"] = timeout

        response = await self.client.chat.completions.create(**request)

        if not response.choices:
            raise EmptyCompletionError()
        content = response.choices[0].message.content or ""
        logger.debug(f"Completion returned {len(content)} chars using {self.settings.model}")
        return content.strip()

    async def close(self):
        await self.client.close()
