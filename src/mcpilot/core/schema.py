"""
Schema definitions for the messages exchanged between the model, the agent loop and the remote
tool servers.

These data models serve as the contract between the planner LLM, the orchestration loop, and the
MCP endpoints.  We keep them separate from runtime logic so they can be imported anywhere without
side-effects.  Tool arguments and results have no fixed shape (the schema is only known at runtime
from the catalog), so they are carried as plain JSON values.
"""

from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


# ---------------------------------------------------------------------------
# Remote tool servers
# ---------------------------------------------------------------------------
class Endpoint(BaseModel):
    """One remote tool server and the namespace its tools live in."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="Logical name, e.g. 'swiggy_food'")
    url: str = Field(..., description="Base address the JSON-RPC requests are posted to")
    prefix: str = Field(..., description="Namespace prefix prepended to every tool name")


class Connection(BaseModel):
    """An established (possibly stateless) protocol session with one endpoint."""

    endpoint: Endpoint
    session_id: Optional[str] = None
    credential: Optional[str] = Field(default=None, repr=False)

    @property
    def stateless(self) -> bool:
        return self.session_id is None


class Tool(BaseModel):
    """A namespaced tool descriptor, as exposed to the model."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object"})
    endpoint_key: str
    original_name: str

    def declared_fields(self) -> set[str]:
        """Names listed under ``properties`` or ``required`` in the input schema."""
        props = self.input_schema.get("properties") or {}
        required = self.input_schema.get("required") or []
        return set(props) | set(required)

    def to_model_tool(self) -> Dict[str, Any]:
        """Render the descriptor in the shape the model API expects."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


# ---------------------------------------------------------------------------
# Conversation transcript
# ---------------------------------------------------------------------------
class TextBlock(BaseModel):
    """Plain text produced by the model or the user."""

    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """A tool invocation requested by the model."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """The result of one tool invocation, tagged with the request it answers."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock], Field(discriminator="type")
]


class ConversationTurn(BaseModel):
    """A single transcript entry: plain text or a list of content blocks."""

    role: Literal["user", "assistant"]
    content: Union[str, List[ContentBlock]]


class Usage(BaseModel):
    """Token counters reported by the model API."""

    input_tokens: int = 0
    output_tokens: int = 0

    def add(self, other: "Usage") -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


class ModelResponse(BaseModel):
    """What one model invocation returns."""

    stop_reason: Optional[str] = None
    content: List[ContentBlock] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock)).strip()

    @property
    def tool_uses(self) -> List[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]


# ---------------------------------------------------------------------------
# Per-conversation state and loop results
# ---------------------------------------------------------------------------
class NamedRef(BaseModel):
    """An identifier together with a label the user would recognise."""

    id: str
    name: str = ""


class SessionContext(BaseModel):
    """Identifiers learned from tool results during one chat conversation."""

    address_id: Optional[str] = None
    restaurant_id: Optional[str] = None
    cart_id: Optional[str] = None
    addresses: List[NamedRef] = Field(default_factory=list)
    restaurants: List[NamedRef] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.address_id
            or self.restaurant_id
            or self.cart_id
            or self.addresses
            or self.restaurants
        )


class ToolOutcome(BaseModel):
    """Independent verdict on the most recent side-effecting tool call."""

    tool_name: str
    succeeded: bool
    raw_content: str = ""


class AgentReply(BaseModel):
    """Final result of one agent loop invocation."""

    text: str
    stop_reason: Optional[str] = None
    usage: Usage = Field(default_factory=Usage)
    outcome: Optional[ToolOutcome] = None
    overridden: bool = False  # True if the model's claim was replaced by the verifier
    rounds: int = 0
    tool_calls: List[str] = Field(default_factory=list)
