from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class InboundEvent(BaseModel):
    """The few fields of a Slack event that a reply needs."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str
    channel: str
    text: str = ""
    subtype: Optional[str] = None
    channel_type: Optional[str] = None
    user: Optional[str] = None
    bot_id: Optional[str] = None
    ts: Optional[str] = None
    thread_ts: Optional[str] = None
    conversation: List[str] = Field(default_factory=list)

    def reply_thread_ts(self, reply_in_thread: bool = False) -> Optional[str]:
        # Already in a thread: stay there. Otherwise only thread when asked to.
        if self.thread_ts:
            return self.thread_ts
        return self.ts if reply_in_thread else None
