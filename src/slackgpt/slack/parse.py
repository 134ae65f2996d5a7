import html
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..schemas.events import InboundEvent

ACTIONABLE_TYPES = ("app_mention", "message")

# Message subtypes that still carry a user's new text.
ACTIONABLE_MESSAGE_SUBTYPES = (None, "thread_broadcast", "file_share")

# <@U123ABC> or <@U123ABC|name>
MENTION_RE = re.compile(r"<@[A-Z0-9]+(?:\|[^>]*)?>")


def build_conversation(text: str) -> List[str]:
    """Strip user mentions, unescape Slack's HTML entities and split on whitespace."""
    cleaned = MENTION_RE.sub(" ", text or "")
    return html.unescape(cleaned).split()


def parse_event(event: Dict[str, Any]) -> Optional[InboundEvent]:
    """
    Parse a Slack event payload (the inner `event` object).
    Returns an InboundEvent if it should be answered, else None.
    """
    # 1. Only mentions and messages
    event_type = event.get("type")
    if event_type not in ACTIONABLE_TYPES:
        return None

    # 2. Ignore bots, ourselves included
    if event.get("bot_id") or event.get("subtype") == "bot_message":
        return None

    if event_type == "message":
        # 3. Ignore edits, deletions, joins...
        if event.get("subtype") not in ACTIONABLE_MESSAGE_SUBTYPES:
            return None
        # 4. Channel messages that mention us also arrive as app_mention
        if event.get("channel_type") != "im":
            return None

    # 5. Needs somewhere to reply and something to say
    conversation = build_conversation(event.get("text", ""))
    if not conversation:
        return None

    try:
        return InboundEvent(**{**event, "conversation": conversation})
    except ValidationError:
        return None
