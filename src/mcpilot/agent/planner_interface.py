"""
Planner interface for mcpilot.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, MCP
client, session tracking) stays model-agnostic and talks to a :class:`BasePlanner`, which takes a
system prompt, the transcript and the tool catalog and returns one :class:`ModelResponse`.

Additional providers can be added by subclassing :class:`BasePlanner` and registering via
:func:`register_planner`.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Sequence,
    Type,
)

from mcpilot.config import settings
from mcpilot.core.errors import ModelInvocationError
from mcpilot.core.schema import (
    ContentBlock,
    ConversationTurn,
    ModelResponse,
    TextBlock,
    Tool,
    ToolUseBlock,
    Usage,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PLANNER_REGISTRY: dict[str, Type["BasePlanner"]] = {}


def register_planner(name: str) -> Callable:
    """Decorator to register a planner class under *name*."""

    def wrapper(cls: Type["BasePlanner"]) -> Type["BasePlanner"]:
        _PLANNER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_planner(name: str | None = None) -> "BasePlanner":
    """
    Factory that returns an instantiated planner.

    Fallback order:
    1. *name* arg
    2. ``settings.PLANNER`` env option
    3. default: ``"anthropic"``
    """

    target = name or getattr(settings, "PLANNER", "anthropic")
    cls = _PLANNER_REGISTRY.get(target.lower())
    if cls is None:
        raise ValueError(f"Planner '{target}' is not registered.")
    return cls()


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BasePlanner(ABC):
    """Abstract planner: transcript + tool catalog -> one model response."""

    # Common system prompt for all planners
    SYSTEM_PROMPT: ClassVar[
        str
    ] = """\
You are a helpful Swiggy assistant inside a chat app. You help the user order food (Swiggy Food), \
groceries (Instamart), or book tables (Dineout) using natural language.

You have tools for:
- Swiggy Food: restaurant search, menu browsing, cart management and food ordering (COD only).
- Instamart: product search, cart and grocery order placement (COD only).
- Dineout: restaurant discovery, slot availability and table booking (free bookings only).

Guidelines:
- Be concise and friendly; replies are shown in a chat window.
- If the user hasn't set a delivery/booking address, ask for it (e.g. "use my home address").
- Before placing any order, summarise the cart and ask the user to confirm. COD orders cannot be \
cancelled once placed.
- When the user confirms, call the order/booking tool. Never say an order is placed or a table is \
booked unless that tool's result confirms it; if it fails, say so plainly.
- Keep responses short: small paragraphs and bullet points.
"""

    @staticmethod
    def render_messages(transcript: Sequence[ConversationTurn]) -> List[Dict[str, Any]]:
        """Serialise the transcript into plain JSON messages."""
        return [turn.model_dump(exclude_none=True) for turn in transcript]

    @abstractmethod
    async def complete(
        self,
        transcript: Sequence[ConversationTurn],
        tools: Sequence[Tool],
        system: str | None = None,
    ) -> ModelResponse:
        """Run one model invocation with automatic tool choice."""


# ---------------------------------------------------------------------------
# Concrete planners
# ---------------------------------------------------------------------------
def _convert_block(block: Any) -> ContentBlock | None:
    """Keep the block types the agent loop understands; drop the rest."""
    if block.type == "text":
        return TextBlock(text=block.text)
    if block.type == "tool_use":
        return ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {}))
    logger.debug("Ignoring model content block of type '%s'", block.type)
    return None


@register_planner("anthropic")
class AnthropicPlanner(BasePlanner):
    """Anthropic Claude-based planner using the Messages API with tool use."""

    def __init__(self, client: Any = None, model: str | None = None, max_tokens: int | None = None):
        self._client = client
        self.model = model or settings.ANTHROPIC_MODEL
        self.max_tokens = max_tokens or settings.MAX_TOKENS

    @property
    def client(self) -> Any:
        if self._client is None:
            # Lazy import - keeps the SDK out of the import path for tests and tooling
            import anthropic  # pylint: disable=import-outside-toplevel

            self._client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        return self._client

    async def complete(
        self,
        transcript: Sequence[ConversationTurn],
        tools: Sequence[Tool],
        system: str | None = None,
    ) -> ModelResponse:
        import anthropic  # pylint: disable=import-outside-toplevel

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system or self.SYSTEM_PROMPT,
            "messages": self.render_messages(transcript),
        }
        if tools:
            kwargs["tools"] = [tool.to_model_tool() for tool in tools]
            kwargs["tool_choice"] = {"type": "auto"}

        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APIError as exc:
            logger.error("Anthropic planner error: %s", exc)
            raise ModelInvocationError(f"Error calling Anthropic: {exc}") from exc

        content = [b for b in (_convert_block(block) for block in response.content) if b]
        usage = Usage(
            input_tokens=getattr(response.usage, "input_tokens", 0) or 0,
            output_tokens=getattr(response.usage, "output_tokens", 0) or 0,
        )
        logger.debug(
            "Anthropic planner response: stop=%s blocks=%d", response.stop_reason, len(content)
        )
        return ModelResponse(stop_reason=response.stop_reason, content=content, usage=usage)
