from typing import Optional

from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..log import get_logger

logger = get_logger("slack_client")


def _is_rate_limited(exc: BaseException) -> bool:
    return isinstance(exc, SlackApiError) and exc.response.get("error") == "ratelimited"


class SlackReplier:
    """Posts replies through the Web API. Shared by every dispatch."""

    def __init__(self, client: AsyncWebClient):
        self.client = client

    @retry(
        retry=retry_if_exception(_is_rate_limited),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def post_reply(self, channel_id: str, text: str, thread_ts: Optional[str] = None):
        """
        Posts a reply with Slack mrkdwn formatting enabled.
        If thread_ts is None the reply is a top-level message in the channel.
        """
        try:
            await self.client.chat_postMessage(
                channel=channel_id,
                thread_ts=thread_ts,
                text=text,
                mrkdwn=True,
                unfurl_links=False,
                unfurl_media=False,
            )
        except SlackApiError as e:
            if _is_rate_limited(e):
                logger.warning("Slack rate limited, retrying...")
                raise
            logger.error(f"Slack API error: {e.response.get('error')}")
            raise
