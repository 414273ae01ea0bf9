"""
Boundary normalization for STREAKr

Legacy documents and older admin screens use several spellings for the same
thing (``locked`` vs ``pending``, ``final_yes`` vs ``settle`` + ``yes``,
``R1`` vs round number 1). Everything entering the core passes through the
helpers here so the services only ever see the canonical vocabulary.
"""

import re

from streakr.errors import InvalidRequest

QUESTION_STATUSES = ("open", "pending", "final", "void")
QUESTION_OUTCOMES = ("yes", "no", "void")
PICK_OUTCOMES = ("yes", "no")
SETTLEMENT_ACTIONS = ("lock", "settle", "void", "reopen")

_STATUS_ALIASES = {
    "open": "open",
    "pending": "pending",
    "locked": "pending",
    "lock": "pending",
    "final": "final",
    "settled": "final",
    "final_yes": "final",
    "final_no": "final",
    "void": "void",
    "voided": "void",
    "final_void": "void",
}

_OUTCOME_ALIASES = {
    "yes": "yes",
    "y": "yes",
    "correct": "yes",
    "win": "yes",
    "winner": "yes",
    "no": "no",
    "n": "no",
    "wrong": "no",
    "loss": "no",
    "loser": "no",
    "void": "void",
    "cancelled": "void",
    "canceled": "void",
}

# Legacy admin vocabulary -> (action, outcome)
_LEGACY_ACTIONS = {
    "lock": ("lock", None),
    "locked": ("lock", None),
    "pending": ("lock", None),
    "reopen": ("reopen", None),
    "open": ("reopen", None),
    "void": ("void", None),
    "final_void": ("void", None),
    "final_yes": ("settle", "yes"),
    "final_no": ("settle", "no"),
    "settle": ("settle", None),
}

_ROUND_SCOPE_RE = re.compile(r"^round-(\d+)$")
_ROUND_CODE_RE = re.compile(r"^R(\d+)$")
_QUESTION_ROUND_RE = re.compile(r"^R(\d+)-")
_GAME_ID_RE = re.compile(r"^(OR|R(\d+))-G(\d+)$")


def normalize_status(value):
    """Canonical question status; blank means open, anything unrecognised is rejected"""
    if value is None:
        return "open"
    s = str(value).strip().lower()
    if not s:
        return "open"
    if s not in _STATUS_ALIASES:
        raise InvalidRequest(f"Invalid question status: {value!r}", status=str(value))
    return _STATUS_ALIASES[s]


def normalize_outcome(value):
    """Canonical question outcome, or None when the value is not recognised"""
    if not isinstance(value, str):
        return None
    return _OUTCOME_ALIASES.get(value.strip().lower())


def normalize_pick_outcome(value):
    """
    Canonical pick value for the Player Pick command.

    Returns "yes", "no" or None (clear). Anything else is an InvalidRequest.
    """
    if value is None:
        return None
    if isinstance(value, str):
        s = value.strip().lower()
        if s in PICK_OUTCOMES:
            return s
        if s in ("", "clear", "none", "null"):
            return None
    raise InvalidRequest(f"Invalid pick outcome: {value!r}")


def normalize_settlement_action(action, outcome=None):
    """
    Translate an admin settlement command into (action, outcome).

    Accepts the canonical vocabulary (lock/settle/void/reopen with an outcome
    for settle) as well as the legacy final_yes/final_no/final_void forms.
    """
    if not isinstance(action, str) or not action.strip():
        raise InvalidRequest("action is required")

    key = action.strip().lower()
    if key not in _LEGACY_ACTIONS:
        raise InvalidRequest(f"Invalid action: {action!r}")

    canonical, implied_outcome = _LEGACY_ACTIONS[key]

    if canonical == "settle":
        resolved = implied_outcome or normalize_outcome(outcome)
        if resolved not in PICK_OUTCOMES:
            raise InvalidRequest("outcome must be 'yes' or 'no' for settle")
        return canonical, resolved

    if outcome not in (None, "") and implied_outcome is None:
        raise InvalidRequest(f"outcome is only accepted for settle, not {canonical}")
    return canonical, None


def round_code(round_number):
    """0 is the Opening Round (OR); everything else is R<n>"""
    return "OR" if round_number == 0 else f"R{round_number}"


def parse_round_code(code):
    s = str(code or "").strip().upper()
    if s == "OR":
        return 0
    match = _ROUND_CODE_RE.match(s)
    if match:
        return int(match.group(1))
    return None


def infer_round_number_from_question_id(question_slug):
    """Round number encoded in a stable question id (``OR-G1-Q1-xxxx``, ``R3-G2-Q4-xxxx``)"""
    q = str(question_slug or "").strip().upper()
    if not q:
        return None
    if q.startswith("OR-"):
        return 0
    match = _QUESTION_ROUND_RE.match(q)
    if match:
        return int(match.group(1))
    return None


def parse_game_id(game_id):
    """Split ``R4-G6`` into (round_number, game_number); None when malformed"""
    s = str(game_id or "").strip().upper()
    match = _GAME_ID_RE.match(s)
    if not match:
        return None
    round_number = 0 if match.group(1) == "OR" else int(match.group(2))
    game_number = int(match.group(3))
    if game_number < 1:
        return None
    return round_number, game_number


def parse_leaderboard_scope(scope):
    """
    Parse a leaderboard scope.

    Returns a (kind, round_number) tuple: ("overall", None), ("round", n) or
    ("finals", None). Unknown scopes return None.
    """
    s = str(scope or "overall").strip().lower()
    if s == "overall":
        return "overall", None
    if s == "finals":
        return "finals", None
    if s == "opening-round":
        return "round", 0
    match = _ROUND_SCOPE_RE.match(s)
    if match:
        return "round", int(match.group(1))
    return None


def fnv1a(text):
    """
    32-bit FNV-1a over UTF-16 code units, rendered in base 36.

    Matches the hashing the web client uses for question ids so
    imported rounds keep their existing ids.
    """
    h = 0x811C9DC5
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * 0x01000193) & 0xFFFFFFFF
    return _to_base36(h)


def _to_base36(number):
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def stable_question_id(round_number, game_id, quarter, question):
    base = f"{round_number}|{game_id}|Q{quarter}|{str(question or '').strip().lower()}"
    return f"{game_id}-Q{quarter}-{fnv1a(base)}"
