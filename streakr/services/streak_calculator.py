"""
Streak Calculator

Pure derivation of a player's streak from their settled history. No database
access happens here: ``streak_service`` builds the match sheets and applies
the Free Kick side effects the result asks for.

Per match, in kick-off order (ties broken by match id):

* no picks                        -> neutral
* any unsettled pick              -> pending; accumulation stops here
* any wrong pick                  -> broken; insured by a Free Kick if one was
                                     already spent on this match, or if a credit
                                     is held and the match was decided while it
                                     was held; otherwise the streak resets to 0
* otherwise                       -> streak += correct picks (voided add nothing)
"""

from collections import namedtuple

from streakr.utils.timezone_utils import to_naive_utc

# One picked question as seen by one player
PickedQuestion = namedtuple(
    "PickedQuestion",
    ["question_id", "pick", "status", "outcome", "personally_voided", "settled_at"],
)
PickedQuestion.__new__.__defaults__ = (False, None)

# All of a player's picks in one match
MatchSheet = namedtuple("MatchSheet", ["match_id", "start_time", "picks"])

MatchVerdict = namedtuple(
    "MatchVerdict",
    ["match_id", "verdict", "correct", "wrong", "voided", "unsettled", "streak_after"],
)

CORRECT = "correct"
WRONG = "wrong"
VOIDED = "voided"
UNSETTLED = "unsettled"

CLEAN = "clean"
BROKEN = "broken"
INSURED = "insured"
NEUTRAL = "neutral"
PENDING = "pending"


def classify_pick(picked):
    """correct / wrong / voided / unsettled for one player's pick"""
    if picked.personally_voided or picked.status == "void":
        return VOIDED
    if picked.status != "final":
        return UNSETTLED
    if picked.outcome == picked.pick:
        return CORRECT
    return WRONG


class StreakResult:
    def __init__(self):
        self.current_streak = 0
        self.longest_streak = 0
        self.matches = []
        self.free_kicks_consumed = []
        self.free_kicks_released = []
        self.free_kicks_remaining = 0
        self.pending_match_id = None

    def __repr__(self):
        return (
            f"<StreakResult current={self.current_streak} longest={self.longest_streak} "
            f"consumed={self.free_kicks_consumed} released={self.free_kicks_released}>"
        )

    @property
    def is_final(self):
        """True when every match in the history is fully settled"""
        return self.pending_match_id is None

    def verdict_for(self, match_id):
        for match in self.matches:
            if match.match_id == match_id:
                return match
        return None

    def to_dict(self):
        return {
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "pending_match_id": self.pending_match_id,
            "free_kicks_remaining": self.free_kicks_remaining,
            "matches": [match._asdict() for match in self.matches],
        }


def order_sheets(sheets):
    return sorted(sheets, key=lambda sheet: (sheet.start_time, sheet.match_id))


def decided_at(sheet):
    """When the last of the sheet's picked questions settled, if recorded"""
    times = [
        to_naive_utc(picked.settled_at)
        for picked in sheet.picks
        if picked.settled_at is not None
    ]
    return max(times) if times else None


def credit_covers(sheet, held_since):
    """A held credit only insures matches decided after it was held"""
    if held_since is None:
        return True
    settled = decided_at(sheet)
    return settled is not None and settled >= to_naive_utc(held_since)


def calculate_streak(
    sheets, free_kick_credits=0, spent_free_kick_match_ids=(), free_kicks_held_since=None
):
    """
    Recompute a streak from scratch.

    Args:
        sheets: iterable of MatchSheet, any order
        free_kick_credits: unspent credits the calculator may consume
        spent_free_kick_match_ids: matches a credit was already spent on
        free_kicks_held_since: when the player started holding the unspent
            credits; broken matches decided earlier stay broken. None means
            no window is known and any broken match may be insured.

    Returns:
        StreakResult. ``free_kicks_consumed`` lists the matches that need a
        credit spent on them now; ``free_kicks_released`` lists matches whose
        spent credit is no longer needed because the match settled clean.
    """
    spent = set(spent_free_kick_match_ids)
    credits = max(int(free_kick_credits or 0), 0)
    result = StreakResult()

    streak = 0
    longest = 0

    for sheet in order_sheets(sheets):
        if result.pending_match_id is not None:
            result.matches.append(
                MatchVerdict(sheet.match_id, PENDING, 0, 0, 0, 0, None)
            )
            continue

        counts = {CORRECT: 0, WRONG: 0, VOIDED: 0, UNSETTLED: 0}
        for picked in sheet.picks:
            counts[classify_pick(picked)] += 1

        if counts[UNSETTLED]:
            verdict = PENDING
            result.pending_match_id = sheet.match_id
        elif counts[WRONG]:
            if sheet.match_id in spent:
                verdict = INSURED
            elif credits > 0 and credit_covers(sheet, free_kicks_held_since):
                credits -= 1
                result.free_kicks_consumed.append(sheet.match_id)
                verdict = INSURED
            else:
                verdict = BROKEN
                streak = 0
        else:
            streak += counts[CORRECT]
            verdict = CLEAN if counts[CORRECT] else NEUTRAL
            if sheet.match_id in spent:
                result.free_kicks_released.append(sheet.match_id)

        longest = max(longest, streak)
        result.matches.append(
            MatchVerdict(
                sheet.match_id,
                verdict,
                counts[CORRECT],
                counts[WRONG],
                counts[VOIDED],
                counts[UNSETTLED],
                None if verdict == PENDING else streak,
            )
        )

    result.current_streak = streak
    result.longest_streak = longest
    result.free_kicks_remaining = credits
    return result
