"""Terminal chat client that talks to a running mcpilot API."""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Callable,
    Dict,
)

import httpx

from mcpilot.common import (
    AnsiColors,
    colored_print,
)
from mcpilot.config import settings

logger = logging.getLogger(__name__)

HELP_TEXT = """\
Just type what you want in plain language, e.g.:
  - "Order chicken biryani from a good restaurant"
  - "Add Maggi and eggs to my Instamart cart"
  - "Book a table for 4 at a North Indian restaurant this Saturday 7 PM"
Commands: /clear (fresh session context), /refresh (reload token), /help, exit"""

EXIT_WORDS = {"exit", "quit"}


class ApiClient:
    """Blocking wrapper around the chat API for one terminal session."""

    def __init__(
        self,
        base_url: str | None = None,
        max_retries: int = 5,
        http: httpx.Client | None = None,
    ):
        self.base_url = base_url or f"http://localhost:{settings.API_PORT}"
        self.max_retries = max_retries
        self.session_id: str | None = None
        # Tool rounds can take minutes; only the connect phase is short
        self._http = http or httpx.Client(timeout=httpx.Timeout(300.0, connect=5.0))

    def close(self) -> None:
        self._http.close()

    def post(self, path: str, payload: Dict[str, Any] | None = None) -> Dict[str, Any]:
        """POST *payload* to *path*; on failure the returned dict carries an ``error`` key."""
        delay = 0.5
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self._http.post(self.base_url + path, json=payload or {})
                response.raise_for_status()
                return response.json()
            except httpx.ConnectError as exc:
                if attempt == self.max_retries:
                    return {"error": f"Could not reach the API at {self.base_url}: {exc}"}
                logger.info(
                    "API not up yet, retry %d/%d in %.1fs", attempt, self.max_retries, delay
                )
                time.sleep(delay)
                delay *= 2
            except httpx.HTTPStatusError as exc:
                logger.error("API returned %s for %s", exc.response.status_code, path)
                return {"error": _error_detail(exc.response)}
            except httpx.HTTPError as exc:
                logger.error("API request to %s failed: %s", path, exc)
                return {"error": f"API request failed: {exc}"}
        return {"error": "API request failed"}

    def start_session(self) -> bool:
        self.session_id = self.post("/sessions").get("session_id")
        return self.session_id is not None

    def ask(self, message: str) -> Dict[str, Any]:
        return self.post("/agent", {"message": message, "session_id": self.session_id})


def _error_detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    return f"API error: {detail or response.status_code}"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
def _show_help(_: ApiClient) -> Dict[str, Any]:
    return {"detail": HELP_TEXT}


def _clear(api: ApiClient) -> Dict[str, Any]:
    return api.post(f"/sessions/{api.session_id}/clear")


def _refresh(api: ApiClient) -> Dict[str, Any]:
    return api.post("/refresh")


COMMANDS: Dict[str, Callable[[ApiClient], Dict[str, Any]]] = {
    "/help": _show_help,
    "/clear": _clear,
    "/refresh": _refresh,
}


def _print_reply(response: Dict[str, Any]) -> None:
    if "error" in response:
        colored_print(response["error"], AnsiColors.RED)
        return
    outcome = response.get("outcome")
    if outcome:
        verdict = "succeeded" if outcome.get("succeeded") else "FAILED"
        colored_print(f"[{outcome.get('tool_name')}] {verdict}", AnsiColors.MAGENTA)
    colored_print(response.get("reply") or response.get("detail", ""), AnsiColors.YELLOW)


def run_cli(api: ApiClient | None = None) -> None:
    """Read messages from stdin until EOF, Ctrl+C or an exit word."""
    api = api or ApiClient()
    try:
        if not api.start_session():
            colored_print("Failed to create a session", AnsiColors.RED)
            return

        colored_print(
            "\nHi! I'm your Swiggy assistant. Type /help for examples, 'exit' (or Ctrl+C) to quit.",
            AnsiColors.GREEN,
        )
        while True:
            colored_print("\nYou: ", AnsiColors.BLUE, end="")
            try:
                text = input().strip()
            except (EOFError, KeyboardInterrupt):
                break
            if not text:
                continue
            if text.lower() in EXIT_WORDS:
                break

            command = COMMANDS.get(text.lower())
            if command is not None:
                _print_reply(command(api))
                continue

            colored_print("Checking Swiggy...", AnsiColors.MAGENTA)
            _print_reply(api.ask(text))
    finally:
        api.close()


if __name__ == "__main__":
    run_cli()
