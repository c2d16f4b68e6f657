"""
Independent verification of side-effecting tool calls.

The model is not trusted to report whether an order or booking went through.  For every call to a
side-effecting tool the verifier inspects the raw result itself and records a
:class:`~mcpilot.core.schema.ToolOutcome`.  When the loop finishes, :meth:`OutcomeVerifier.review`
replaces any success claim in the model's final text that the recorded outcome does not back up.

Failure vocabulary always wins over success vocabulary.  The remote API is known to send an
optimistic root-level ``success``/``message`` next to a failing ``data`` object, so nested
failure signals are checked first and root-level success flags are never trusted on their own.
"""

import logging
import re
from typing import (
    Any,
    Pattern,
)

from mcpilot.common import (
    find_key,
    parse_json,
    preview,
    walk,
)
from mcpilot.config import settings
from mcpilot.core.schema import ToolOutcome

logger = logging.getLogger(__name__)


def _word(alternatives: str) -> str:
    """Match *alternatives* only when not glued to other letters (``_`` and digits still split)."""
    return rf"(?<![a-z])(?:{alternatives})(?![a-z])"


FAILURE_RE = re.compile(
    "|".join(
        (
            r"error|fail|unable|couldn'?t|could not|invalid|not accepting|declined|rejected",
            _word(r"(?:un|in)(?:successful|complete|confirmed)"),
            _word(r"not[\s_-]+(?:been[\s_-]+|yet[\s_-]+)?(?:placed|confirmed|completed?|booked)"),
        )
    ),
    re.IGNORECASE,
)
CANCELLED_RE = re.compile(r"cancel", re.IGNORECASE)
SUCCESS_STATUS_RE = re.compile(
    _word(r"placed|confirmed|success(?:ful)?|completed?|booked"), re.IGNORECASE
)
SUCCESS_TEXT_RE = re.compile(
    _word(r"placed|confirmed|success(?:ful(?:ly)?)?|booked")
    + r"|order\s*(?:id(?![a-z])|#|no(?![a-z])\.?|number)|booking\s*(?:id(?![a-z])|#)|#\s*\d+",
    re.IGNORECASE,
)

# Completed-action phrasing only; "once placed" or "will be confirmed" is not a claim
CLAIM_RE = re.compile(
    r"\b(?:has|have)\s+been\s+(?:successfully\s+)?(?:placed|confirmed|booked|reserved)\b"
    r"|\b(?:is|was|are|were)\s+(?:now\s+)?(?:successfully\s+)?"
    r"(?:placed|confirmed|booked|reserved)\b"
    r"|\bsuccessfully\s+(?:ordered|booked|placed|reserved|confirmed)\b"
    r"|\b(?:i'?ve|i\s+have)\s+(?:successfully\s+)?(?:placed|booked|confirmed|reserved)\b"
    r"|\b(?:order|booking|table|reservation)\s+(?:placed|confirmed|booked)\b"
    r"|\b(?:order|booking)\s*(?:id\b|#)",
    re.IGNORECASE,
)
HEDGE_RE = re.compile(
    r"\b(?:not|never|once|before|after|until|unless|if|whether|cannot|can't)\b",
    re.IGNORECASE,
)
CLAIM_LOOKBEHIND_CHARS = 40

ID_KEYS = (
    "orderId",
    "order_id",
    "orderID",
    "bookingId",
    "booking_id",
    "reservationId",
    "reservation_id",
    "confirmationId",
    "confirmation_id",
)
STATUS_KEYS = ("status", "orderStatus", "bookingStatus", "state")

LEADING_CHARS = 200
SEARCH_DEPTH = 5


# ---------------------------------------------------------------------------
# Result classification
# ---------------------------------------------------------------------------
def _structural_verdict(payload: Any) -> bool:
    """Classify a decoded JSON result; ``True`` means the action succeeded."""
    data = payload.get("data") if isinstance(payload, dict) else None
    if isinstance(data, dict):
        if data.get("successful") is False:
            return False
        status_message = data.get("statusMessage")
        if isinstance(status_message, str) and FAILURE_RE.search(status_message):
            return False
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and FAILURE_RE.search(message):
            return False

    statuses = [
        value
        for key, value, _ in walk(payload, SEARCH_DEPTH)
        if key in STATUS_KEYS and isinstance(value, str)
    ]
    if any(FAILURE_RE.search(value) or CANCELLED_RE.search(value) for value in statuses):
        return False

    if find_key(payload, ID_KEYS, max_depth=SEARCH_DEPTH) is not None:
        return True
    return any(SUCCESS_STATUS_RE.search(value) for value in statuses)


def _textual_verdict(text: str) -> bool:
    """Classify a non-JSON result; absence of any signal counts as failure."""
    if FAILURE_RE.search(text[:LEADING_CHARS]):
        return False
    return bool(SUCCESS_TEXT_RE.search(text))


def claims_success(text: str) -> bool:
    """
    True if *text* states that an order or booking went through.

    A claim phrase preceded in the same sentence by a negation or condition ("once your order
    is placed", "if the booking was confirmed") does not count.
    """
    for match in CLAIM_RE.finditer(text):
        start = match.start()
        sentence_start = max(text.rfind(mark, 0, start) for mark in ".!?\n") + 1
        lead = text[max(sentence_start, start - CLAIM_LOOKBEHIND_CHARS) : start]
        if not HEDGE_RE.search(lead):
            return True
    return False


def classify_result(raw: str) -> bool:
    """Return ``True`` if *raw* shows that a side-effecting action succeeded."""
    payload = parse_json(raw)
    if isinstance(payload, (dict, list)):
        return _structural_verdict(payload)
    return _textual_verdict(raw)


def failure_detail(raw: str) -> str:
    """Pick the most specific human-readable reason out of a raw tool result."""
    payload = parse_json(raw)
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict) and isinstance(data.get("statusMessage"), str):
            return data["statusMessage"]
        if isinstance(payload.get("message"), str):
            return payload["message"]
        if isinstance(payload.get("error"), str):
            return payload["error"]
    return preview(raw, 200) if raw.strip() else ""


# ---------------------------------------------------------------------------
# Verifier
# ---------------------------------------------------------------------------
class OutcomeVerifier:
    """Holds the most recent side-effecting outcome of one agent loop invocation."""

    def __init__(self, pattern: str | Pattern[str] | None = None):
        if pattern is None:
            pattern = settings.SIDE_EFFECT_TOOL_PATTERN
        self.pattern: Pattern[str] = (
            re.compile(pattern, re.IGNORECASE) if isinstance(pattern, str) else pattern
        )
        self.outcome: ToolOutcome | None = None

    def is_side_effecting(self, tool_name: str) -> bool:
        return bool(self.pattern.search(tool_name))

    def record(self, tool_name: str, raw: str, errored: bool = False) -> ToolOutcome | None:
        """
        Classify the result of *tool_name* and retain it if the tool is side-effecting.

        A call that raised (*errored*) is always a failure.
        """
        if not self.is_side_effecting(tool_name):
            return None
        succeeded = False if errored else classify_result(raw)
        self.outcome = ToolOutcome(tool_name=tool_name, succeeded=succeeded, raw_content=raw)
        logger.info("Outcome for '%s': %s", tool_name, "success" if succeeded else "failure")
        return self.outcome

    def review(self, final_text: str) -> str | None:
        """
        Check the model's final text against the retained outcome.

        Returns a replacement message when the text claims success the outcome does not
        confirm, otherwise ``None``.
        """
        if not claims_success(final_text):
            return None
        if self.outcome is not None and self.outcome.succeeded:
            return None

        if self.outcome is None:
            logger.warning("Model claimed success but no order/booking call was made")
            return (
                "I could not confirm this. No order or booking request was completed, so "
                "nothing has been placed yet. Reply 'confirm' if you want me to try again."
            )

        detail = failure_detail(self.outcome.raw_content)
        logger.warning(
            "Overriding success claim; '%s' failed: %s", self.outcome.tool_name, preview(detail)
        )
        message = "Sorry, the order/booking did not go through."
        if detail:
            message += f" The service said: {detail.rstrip('. ')}."
        return message + " Nothing has been placed. You can try again or pick another option."
