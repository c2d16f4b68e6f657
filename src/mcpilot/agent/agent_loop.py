"""Main orchestration loop for mcpilot."""

from __future__ import annotations

import logging
import re
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from mcpilot.agent.outcome_verifier import OutcomeVerifier
from mcpilot.agent.planner_interface import BasePlanner
from mcpilot.agent.session_context import (
    context_hint,
    update_session_context,
)
from mcpilot.config import settings
from mcpilot.core.errors import (
    AllEndpointsUnreachable,
    RoundLimitExceeded,
)
from mcpilot.core.schema import (
    AgentReply,
    ConversationTurn,
    SessionContext,
    Tool,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from mcpilot.mcp.runtime import McpRuntime

logger = logging.getLogger(__name__)

PLACEHOLDER_REPLY = "Done."
REPLY_LIMIT_MESSAGE = (
    "I hit the reply limit while working on this. Please send your request again, "
    "or make it a little more specific (for example, add your delivery address)."
)
TOOLS_UNAVAILABLE_MESSAGE = (
    "I couldn't reach the Swiggy tools right now. {reason} "
    "Check your Swiggy credential and try again."
)
CONFIRMATION_DIRECTIVE = (
    "[The user has confirmed. Call the order/booking placement tool now with the known IDs. "
    "Do not assume it is already done, and do not say the order is placed or the table is "
    "booked unless that tool's result confirms it.]"
)

_AFFIRMATIVE = (
    r"(?:yes|yep|yeah|ok|okay|sure|confirm(?:ed)?|go ahead|place it|place the order|proceed|do it)"
)
AFFIRMATIVE_RE = re.compile(
    rf"^{_AFFIRMATIVE}(?:[\s,.!]+(?:{_AFFIRMATIVE}|please))*[\s.!]*$", re.IGNORECASE
)
AFFIRMATIVE_MAX_CHARS = 40

# Tool argument name -> SessionContext attribute
IDENTIFIER_FIELDS = {
    "addressId": "address_id",
    "restaurantId": "restaurant_id",
    "cartId": "cart_id",
}


# ---------------------------------------------------------------------------
# Prompt helpers
# ---------------------------------------------------------------------------
def is_affirmative(message: str) -> bool:
    """True for short confirmations such as "yes", "ok" or "go ahead"."""
    text = message.strip()
    return len(text) <= AFFIRMATIVE_MAX_CHARS and bool(AFFIRMATIVE_RE.match(text))


def build_user_content(message: str, context: SessionContext) -> str:
    """Annotate the user's message with known identifiers and, if needed, the confirm directive."""
    parts = [message]
    hint = context_hint(context)
    if hint:
        parts.append(hint)
    if is_affirmative(message):
        parts.append(CONFIRMATION_DIRECTIVE)
    return "\n\n".join(parts)


def backfill_identifiers(
    tool: Tool | None, args: Dict[str, Any], context: SessionContext
) -> Dict[str, Any]:
    """
    Fill identifier arguments the model left out from the session context.

    Only fields the tool declares are filled; a tool with no declared fields gets every
    identifier we know.
    """
    declared = tool.declared_fields() if tool is not None else set()
    filled = dict(args)
    for arg_name, attr in IDENTIFIER_FIELDS.items():
        value = getattr(context, attr)
        if not value or filled.get(arg_name) not in (None, ""):
            continue
        if declared and arg_name not in declared:
            continue
        filled[arg_name] = value
        logger.info("Backfilled %s=%s from session context", arg_name, value)
    return filled


# ---------------------------------------------------------------------------
# Agent Loop
# ---------------------------------------------------------------------------
@dataclass
class _Run:
    """Working state of one loop invocation."""

    transcript: List[ConversationTurn]
    tools: List[Tool]
    context: SessionContext
    verifier: OutcomeVerifier
    credential: str | None
    usage: Usage = field(default_factory=Usage)
    tool_calls: List[str] = field(default_factory=list)
    rounds: int = 0

    @property
    def tools_by_name(self) -> Dict[str, Tool]:
        return {tool.name: tool for tool in self.tools}


class AgentLoop:
    """Alternates model calls with tool executions until the model answers in text."""

    def __init__(
        self,
        runtime: McpRuntime,
        planner: BasePlanner,
        max_rounds: int | None = None,
        side_effect_pattern: str | None = None,
    ):
        self.runtime = runtime
        self.planner = planner
        self.max_rounds = settings.MAX_ROUNDS if max_rounds is None else max_rounds
        self.side_effect_pattern = side_effect_pattern

    async def run(
        self,
        message: str,
        history: Sequence[ConversationTurn] = (),
        context: SessionContext | None = None,
        credential: str | None = None,
    ) -> AgentReply:
        """
        Answer one user message.

        *context* is updated in place from tool results and survives across calls; the caller
        owns it.  Tool failures never escape: they are returned to the model as error results.
        """
        if context is None:
            context = SessionContext()

        try:
            tools = await self.runtime.catalog.list_all_tools(credential)
        except AllEndpointsUnreachable as exc:
            return AgentReply(
                text=TOOLS_UNAVAILABLE_MESSAGE.format(reason=exc), stop_reason="tools_unavailable"
            )
        if not tools:
            return AgentReply(
                text=TOOLS_UNAVAILABLE_MESSAGE.format(reason="No tools were returned."),
                stop_reason="tools_unavailable",
            )

        run = _Run(
            transcript=[
                *history,
                ConversationTurn(role="user", content=build_user_content(message, context)),
            ],
            tools=tools,
            context=context,
            verifier=OutcomeVerifier(self.side_effect_pattern),
            credential=credential,
        )

        try:
            return await self._run_rounds(run)
        except RoundLimitExceeded as exc:
            logger.warning("%s; returning reply-limit message", exc)
            return AgentReply(
                text=REPLY_LIMIT_MESSAGE,
                stop_reason="round_limit",
                usage=run.usage,
                outcome=run.verifier.outcome,
                rounds=exc.rounds,
                tool_calls=run.tool_calls,
            )

    async def _run_rounds(self, run: _Run) -> AgentReply:
        tools_by_name = run.tools_by_name
        for round_no in range(1, self.max_rounds + 1):
            run.rounds = round_no
            response = await self.planner.complete(run.transcript, run.tools)
            run.usage.add(response.usage)
            tool_uses = response.tool_uses
            logger.info(
                "Round %d: stop=%s tools=%s",
                round_no,
                response.stop_reason,
                [use.name for use in tool_uses],
            )

            if not tool_uses:
                return self._finish(run, response.text or PLACEHOLDER_REPLY, response.stop_reason)

            run.transcript.append(
                ConversationTurn(role="assistant", content=list(response.content))
            )
            results = []
            for use in tool_uses:
                results.append(await self._execute(run, use, tools_by_name.get(use.name)))
            run.transcript.append(ConversationTurn(role="user", content=results))

        raise RoundLimitExceeded(self.max_rounds)

    async def _execute(self, run: _Run, use: ToolUseBlock, tool: Tool | None) -> ToolResultBlock:
        args = dict(use.input)
        if run.verifier.is_side_effecting(use.name):
            args = backfill_identifiers(tool, args, run.context)
        run.tool_calls.append(use.name)

        try:
            text = await self.runtime.invoker.call_tool(use.name, args, run.credential)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Tool '%s' failed: %s", use.name, exc)
            error_text = f"Error: {exc}"
            run.verifier.record(use.name, error_text, errored=True)
            return ToolResultBlock(tool_use_id=use.id, content=error_text, is_error=True)

        update_session_context(run.context, use.name, args, text)
        run.verifier.record(use.name, text)
        return ToolResultBlock(tool_use_id=use.id, content=text)

    @staticmethod
    def _finish(run: _Run, text: str, stop_reason: str | None) -> AgentReply:
        replacement = run.verifier.review(text)
        return AgentReply(
            text=replacement or text,
            stop_reason=stop_reason,
            usage=run.usage,
            outcome=run.verifier.outcome,
            overridden=replacement is not None,
            rounds=run.rounds,
            tool_calls=run.tool_calls,
        )
