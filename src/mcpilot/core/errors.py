"""Exception taxonomy shared by the MCP client, the tool catalog and the agent loop."""

from typing import Mapping


class McpilotError(RuntimeError):
    """Base class for every error raised by mcpilot."""


class AuthenticationRequired(McpilotError):
    """The remote server rejected a handshake that carried no credential."""


class HandshakeFailed(McpilotError):
    """The ``initialize`` exchange failed for any reason other than missing auth."""


class ProtocolError(McpilotError):
    """The remote server returned a payload that is not valid JSON-RPC."""


class UnknownTool(McpilotError):
    """A namespaced tool name does not start with any configured endpoint prefix."""


class RemoteError(McpilotError):
    """The remote server answered with a JSON-RPC ``error`` object."""


class ToolInvocationError(RemoteError):
    """A ``tools/call`` request was answered with an error object."""


class AllEndpointsUnreachable(McpilotError):
    """Every endpoint failed while building the tool catalog."""

    def __init__(self, failures: Mapping[str, str]):
        self.failures = dict(failures)
        detail = "; ".join(f"{key}: {reason}" for key, reason in self.failures.items())
        super().__init__(f"Could not load any tools. {detail}".strip())


class RoundLimitExceeded(McpilotError):
    """The agent loop used up its round budget without a final answer."""

    def __init__(self, rounds: int):
        self.rounds = rounds
        super().__init__(f"Agent loop stopped after {rounds} rounds")


class ModelInvocationError(McpilotError):
    """The language model API call failed."""
