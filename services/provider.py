"""Language-model provider: streamed chat completions over an OpenAI-compatible API."""
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence
import logging

from langchain.chat_models import init_chat_model
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from config import OPENROUTER_API_KEY, OPENROUTER_BASE_URL
from dtos.chat_request import ChatMessage

logger = logging.getLogger(__name__)

# Substrings of model ids that expose a reasoning trace.
REASONING_MODEL_MARKERS = (
    ":thinking",
    "deepseek-r1",
    "qwq",
    "openai/o1",
    "openai/o3",
    "openai/o4",
    "reasoner",
    "reasoning",
)


def is_reasoning_model(model: str) -> bool:
    """Whether a model id looks like a reasoning-capable model."""
    model = model.lower()
    return any(marker in model for marker in REASONING_MODEL_MARKERS)


@dataclass
class StreamChunk:
    """One increment of provider output: answer text or reasoning trace."""
    kind: str  # "text" or "reasoning"
    text: str


def to_langchain_messages(messages: Sequence[ChatMessage]) -> List[BaseMessage]:
    converted: List[BaseMessage] = []
    for message in messages:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


def _chunk_text(content) -> str:
    if isinstance(content, str):
        return content
    # Some providers send a list of content blocks
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def _reasoning_text(chunk) -> Optional[str]:
    extra = getattr(chunk, "additional_kwargs", None) or {}
    return extra.get("reasoning_content") or extra.get("reasoning")


class ChatProvider:
    """Opens chat models for a model id and streams their output as StreamChunks."""

    def __init__(self, api_key: str = OPENROUTER_API_KEY, base_url: str = OPENROUTER_BASE_URL, temperature: float = 0.7):
        self.api_key = api_key
        self.base_url = base_url
        self.temperature = temperature

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def chat_model(self, model: str, reasoning: bool = False) -> BaseChatModel:
        """Chat model for an OpenRouter-style id such as `openai/gpt-4o-mini`."""
        kwargs = {}
        if reasoning:
            kwargs["extra_body"] = {"include_reasoning": True}
        return init_chat_model(
            model,
            model_provider="openai",
            base_url=self.base_url,
            api_key=self.api_key,
            temperature=self.temperature,
            streaming=True,
            **kwargs,
        )

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        reasoning: bool = False,
    ) -> AsyncIterator[StreamChunk]:
        """Yield reasoning and text increments as the provider produces them."""
        llm = self.chat_model(model, reasoning=reasoning)
        async for chunk in llm.astream(to_langchain_messages(messages)):
            if reasoning:
                trace = _reasoning_text(chunk)
                if trace:
                    yield StreamChunk("reasoning", trace)
            text = _chunk_text(chunk.content)
            if text:
                yield StreamChunk("text", text)
