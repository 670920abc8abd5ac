"""Arena player value objects and the vocabularies they use."""
from dataclasses import dataclass
from typing import Optional

STATUS_ONLINE = 'online'
STATUS_AVAILABLE = 'available'
STATUS_AWAY = 'away'
STATUS_IN_MATCH = 'in-match'
STATUS_OFFLINE = 'offline'

PLAYER_STATUSES = {STATUS_ONLINE, STATUS_AVAILABLE, STATUS_AWAY, STATUS_IN_MATCH, STATUS_OFFLINE}
CHALLENGEABLE_STATUSES = {STATUS_ONLINE, STATUS_AVAILABLE}

INTENT_SINGLES = 'singles'
INTENT_DOUBLES_LOOKING = 'doubles-looking'
INTENT_DOUBLES_TEAM = 'doubles-team'

MATCH_INTENTS = {INTENT_SINGLES, INTENT_DOUBLES_LOOKING, INTENT_DOUBLES_TEAM}

PARTNER_TIERS = ('recreational', 'competitive', 'elite', 'professional')
ARENA_TIERS = ('bronze', 'silver', 'gold', 'platinum', 'diamond')

_PARTNER_TO_ARENA_TIER = {
    'recreational': 'bronze',
    'competitive': 'silver',
    'elite': 'gold',
    'professional': 'platinum',
}


def normalize_status(raw_value):
    """Map a raw availability value onto the known statuses ('busy' is in-match)."""
    status = str(raw_value or '').strip().lower()
    if status == 'busy':
        return STATUS_IN_MATCH
    if status in PLAYER_STATUSES:
        return status
    return STATUS_OFFLINE


def normalize_intent(raw_value):
    intent = str(raw_value or '').strip().lower()
    if intent in MATCH_INTENTS:
        return intent
    return INTENT_SINGLES


def map_tier(tier):
    """Translate a partner-system tier onto the arena tier scale."""
    value = str(tier or '').strip().lower()
    if value in ARENA_TIERS:
        return value
    return _PARTNER_TO_ARENA_TIER.get(value, 'bronze')


@dataclass(frozen=True)
class PlayerRef:
    id: int
    name: str = ''

    def to_dict(self):
        return {'id': self.id, 'name': self.name}


@dataclass
class Player:
    """A player as seen from one viewer's arena lobby."""

    id: int
    name: str
    tier: str = 'bronze'
    ranking_points: int = 0
    wins: int = 0
    losses: int = 0
    distance_km: Optional[float] = None
    status: str = STATUS_OFFLINE
    match_intent: str = INTENT_SINGLES
    partner_id: Optional[int] = None
    partner_name: str = ''

    @property
    def games_played(self) -> int:
        return (self.wins or 0) + (self.losses or 0)

    @property
    def win_rate(self) -> float:
        if self.games_played == 0:
            return 0.0
        return (self.wins or 0) / self.games_played

    @property
    def is_challengeable(self) -> bool:
        return self.status in CHALLENGEABLE_STATUSES

    def ref(self) -> PlayerRef:
        return PlayerRef(id=self.id, name=self.name)

    def partner_ref(self) -> Optional[PlayerRef]:
        if self.partner_id is None:
            return None
        return PlayerRef(id=self.partner_id, name=self.partner_name)

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'tier': self.tier,
            'ranking_points': self.ranking_points,
            'wins': self.wins, 'losses': self.losses,
            'games_played': self.games_played,
            'win_rate': round(self.win_rate, 3),
            'distance_km': round(self.distance_km, 2) if self.distance_km is not None else None,
            'status': self.status, 'match_intent': self.match_intent,
            'partner': self.partner_ref().to_dict() if self.partner_id is not None else None,
        }
