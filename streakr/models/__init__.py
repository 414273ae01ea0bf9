from .free_kick import FreeKickCredit, FreeKickUse
from .league import League
from .league_member import LeagueMember
from .match import Match
from .panic_void import PanicVoid
from .pick import Pick
from .question import Question
from .round import Round
from .season import Season
from .settlement_event import SettlementEvent
from .user import User

__all__ = [
    "User",
    "Season",
    "Round",
    "Match",
    "Question",
    "Pick",
    "PanicVoid",
    "FreeKickCredit",
    "FreeKickUse",
    "SettlementEvent",
    "League",
    "LeagueMember",
]
