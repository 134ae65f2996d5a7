from pydantic import BaseModel, ConfigDict, Field

from ..llm.prompts import DEFAULT_MODEL, FRAGMENT_SEPARATOR, SYSTEM_PROMPT


class CompletionSettings(BaseModel):
    """Fixed knobs of every completion request. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    model: str = DEFAULT_MODEL
    system_prompt: str = SYSTEM_PROMPT
    max_tokens: int = Field(1000, gt=0)
    temperature: float = Field(0.5, ge=0.0, le=2.0)
    separator: str = FRAGMENT_SEPARATOR
