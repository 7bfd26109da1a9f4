"""
Spam evaluation for inbound form submissions.

Checks run in a fixed order. Honeypot, timing and rate checks are decisive:
the first one that fires returns a verdict carrying that single signal.
Content checks only add score; the submission is spam when the total
reaches SPAM_SCORE_THRESHOLD.
"""

import logging
import re
import time
from typing import Any, Callable, List, Mapping, Optional

from models.base import SpamSignal, SpamVerdict
from utils.rate_history import RateHistory

logger = logging.getLogger("backend.spam")

# Reserved keys sent by the embed script
HONEYPOT_FIELD = "__honeypot"
TIMESTAMP_FIELD = "__timestamp"
CONTROL_FIELDS = (HONEYPOT_FIELD, TIMESTAMP_FIELD)

MIN_FILL_SECONDS = 2.0
RATE_WINDOW_SECONDS = 5 * 60
RATE_MAX_SUBMISSIONS = 3
MAX_URLS_PER_FIELD = 2
SPAM_SCORE_THRESHOLD = 70

SIGNAL_HONEYPOT = "honeypot_filled"
SIGNAL_TOO_FAST = "too_fast"
SIGNAL_RATE_LIMIT = "rate_limit_exceeded"
SIGNAL_MULTIPLE_URLS = "multiple_urls"

SIGNAL_SCORES = {
    SIGNAL_HONEYPOT: 100,
    SIGNAL_TOO_FAST: 80,
    SIGNAL_RATE_LIMIT: 90,
    SIGNAL_MULTIPLE_URLS: 60,
}

REASON_HONEYPOT = "Honeypot field was filled"
REASON_TOO_FAST = "Form submitted too quickly"
REASON_RATE_LIMIT = "Too many submissions from this IP"
REASON_THRESHOLD = "Spam score threshold exceeded"

_URL_RE = re.compile(r"https?://")
_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def _signal(name: str) -> SpamSignal:
    return SpamSignal(signal=name, score=SIGNAL_SCORES[name])


def _decisive(name: str, reason: str) -> SpamVerdict:
    return SpamVerdict(is_spam=True, reason=reason, signals=[_signal(name)])


def _is_filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value != ""
    return bool(value)


def _overflowed(negative: bool) -> float:
    return float("-inf") if negative else float("inf")


def parse_client_timestamp(value: Any) -> Optional[float]:
    """Client start time in epoch milliseconds, or None when unusable.

    Strings are read up to the first non-digit ("1700000000000abc" parses);
    empty, zero and non-numeric values mean "no timestamp". Values too
    large for a float saturate to +/- infinity.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            ms = float(value)
        except OverflowError:
            return _overflowed(value < 0)
    elif isinstance(value, str):
        m = _LEADING_INT_RE.match(value)
        if not m:
            return None
        digits = m.group(1)
        try:
            ms = float(int(digits))
        except (OverflowError, ValueError):
            # ValueError: int() refuses strings past the interpreter's digit limit
            return _overflowed(digits.startswith("-"))
    else:
        return None
    if ms != ms or ms == 0:  # NaN or zero
        return None
    return ms


def count_urls(text: str) -> int:
    return len(_URL_RE.findall(text))


def strip_control_fields(payload: Mapping[str, Any]) -> dict:
    """Copy of the payload without the embed script's control keys"""
    return {k: v for k, v in payload.items() if k not in CONTROL_FIELDS}


def evaluate(payload: Mapping[str, Any], origin_address: str, history: RateHistory,
             now: Optional[float] = None) -> SpamVerdict:
    """Classify a raw payload (control fields included).

    ``now`` is epoch seconds. Records ``now`` in ``history`` for the origin
    unless the honeypot, timing or rate check fires first.
    """
    now = time.time() if now is None else now

    if _is_filled(payload.get(HONEYPOT_FIELD)):
        return _decisive(SIGNAL_HONEYPOT, REASON_HONEYPOT)

    started_ms = parse_client_timestamp(payload.get(TIMESTAMP_FIELD))
    if started_ms is not None:
        elapsed = (now * 1000.0 - started_ms) / 1000.0
        if elapsed < MIN_FILL_SECONDS:
            return _decisive(SIGNAL_TOO_FAST, REASON_TOO_FAST)

    if not history.record_if_below(origin_address, now, RATE_WINDOW_SECONDS, RATE_MAX_SUBMISSIONS):
        return _decisive(SIGNAL_RATE_LIMIT, REASON_RATE_LIMIT)

    signals: List[SpamSignal] = []
    # Counted per field, not across fields
    if any(isinstance(v, str) and count_urls(v) > MAX_URLS_PER_FIELD for v in payload.values()):
        signals.append(_signal(SIGNAL_MULTIPLE_URLS))

    verdict = SpamVerdict(is_spam=False, reason="", signals=signals)
    if verdict.total_score >= SPAM_SCORE_THRESHOLD:
        return SpamVerdict(is_spam=True, reason=REASON_THRESHOLD, signals=signals)
    return verdict


class SpamEvaluator:
    """Binds a rate history and a clock to ``evaluate``"""

    def __init__(self, history: RateHistory, clock: Callable[[], float] = time.time):
        self.history = history
        self.clock = clock

    def evaluate(self, payload: Mapping[str, Any], origin_address: str) -> SpamVerdict:
        verdict = evaluate(payload, origin_address, self.history, now=self.clock())
        if verdict.is_spam:
            logger.info(
                "spam verdict origin=%s reason=%s signals=%s",
                origin_address,
                verdict.reason,
                [s.signal for s in verdict.signals],
            )
        return verdict
