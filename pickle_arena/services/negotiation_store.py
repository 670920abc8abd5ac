"""Challenge and partner-request records plus the in-memory store that owns them."""
import itertools
from dataclasses import dataclass, field, replace
from typing import Optional

from pickle_arena.services.players import PlayerRef

KIND_CHALLENGE = 'challenge'
KIND_PARTNER_REQUEST = 'partner_request'

STATUS_PENDING = 'pending'
STATUS_READY_CHECK = 'ready-check'
STATUS_CONFIRMED = 'confirmed'
STATUS_ACCEPTED = 'accepted'
STATUS_DECLINED = 'declined'
STATUS_EXPIRED = 'expired'
STATUS_STARTED = 'started'

OPEN_STATUSES = {STATUS_PENDING, STATUS_READY_CHECK}
# Records in these states take no further transitions at all.
CLOSED_STATUSES = {STATUS_DECLINED, STATUS_EXPIRED, STATUS_STARTED, STATUS_ACCEPTED}

ORIGIN_SWIPE = 'swipe'
ORIGIN_CREATE_MATCH = 'create-match'
ORIGIN_MANUAL = 'manual'
ORIGINS = {ORIGIN_SWIPE, ORIGIN_CREATE_MATCH, ORIGIN_MANUAL}

CHALLENGE_SINGLES = 'singles'
CHALLENGE_DOUBLES_TEAM = 'doubles-team'
CHALLENGE_MATCH_TYPES = {CHALLENGE_SINGLES, CHALLENGE_DOUBLES_TEAM}


def _iso(value):
    return value.isoformat() if value else None


@dataclass
class Challenge:
    id: int
    challenger: PlayerRef
    challenged: PlayerRef
    match_type: str
    created_via: str
    created_at: object
    message: str = ''
    challenger_partner: Optional[PlayerRef] = None
    challenged_partner: Optional[PlayerRef] = None
    status: str = STATUS_PENDING
    ready_status: dict = field(default_factory=lambda: {
        'challenger_ready': False,
        'challenged_ready': False,
    })
    updated_at: object = None

    kind = KIND_CHALLENGE
    sides = ('challenger', 'challenged')
    success_status = STATUS_CONFIRMED

    def party(self, side):
        return self.challenger if side == 'challenger' else self.challenged

    def participant_ids(self):
        ids = [self.challenger.id]
        if self.challenger_partner:
            ids.append(self.challenger_partner.id)
        ids.append(self.challenged.id)
        if self.challenged_partner:
            ids.append(self.challenged_partner.id)
        return ids

    def teams(self):
        team1 = [self.challenger.id]
        team2 = [self.challenged.id]
        if self.challenger_partner:
            team1.append(self.challenger_partner.id)
        if self.challenged_partner:
            team2.append(self.challenged_partner.id)
        return team1, team2

    def copy(self):
        return replace(self, ready_status=dict(self.ready_status))

    def to_dict(self):
        return {
            'id': self.id,
            'kind': self.kind,
            'challenger': self.challenger.to_dict(),
            'challenged': self.challenged.to_dict(),
            'challenger_partner': self.challenger_partner.to_dict() if self.challenger_partner else None,
            'challenged_partner': self.challenged_partner.to_dict() if self.challenged_partner else None,
            'match_type': self.match_type,
            'message': self.message,
            'created_via': self.created_via,
            'status': self.status,
            'ready_status': dict(self.ready_status),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


@dataclass
class PartnerRequest:
    id: int
    requester: PlayerRef
    target: PlayerRef
    created_via: str
    created_at: object
    message: str = ''
    status: str = STATUS_PENDING
    ready_status: dict = field(default_factory=lambda: {
        'requester_ready': False,
        'target_ready': False,
    })
    updated_at: object = None

    kind = KIND_PARTNER_REQUEST
    sides = ('requester', 'target')
    success_status = STATUS_ACCEPTED

    def party(self, side):
        return self.requester if side == 'requester' else self.target

    def participant_ids(self):
        return [self.requester.id, self.target.id]

    def copy(self):
        return replace(self, ready_status=dict(self.ready_status))

    def to_dict(self):
        return {
            'id': self.id,
            'kind': self.kind,
            'requester': self.requester.to_dict(),
            'target': self.target.to_dict(),
            'message': self.message,
            'created_via': self.created_via,
            'status': self.status,
            'ready_status': dict(self.ready_status),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


def side_for(record, player_id):
    """Which side of ``record`` the player is on, or None."""
    for side in record.sides:
        if record.party(side).id == player_id:
            return side
    return None


class NegotiationStore:
    """In-memory home of every challenge and partner request for one engine."""

    def __init__(self, first_id=1):
        self._records = {}
        self._ids = itertools.count(max(int(first_id), 1))

    def next_id(self):
        return next(self._ids)

    def add(self, record):
        if record.id in self._records:
            raise ValueError(f'Negotiation {record.id} already stored')
        self._records[record.id] = record
        return record

    def get(self, negotiation_id):
        return self._records.get(negotiation_id)

    def remove(self, negotiation_id):
        return self._records.pop(negotiation_id, None)

    def _filtered(self, kind, status):
        return [
            record for record in self._records.values()
            if record.kind == kind and (status is None or record.status == status)
        ]

    def challenges(self, status=None):
        return self._filtered(KIND_CHALLENGE, status)

    def partner_requests(self, status=None):
        return self._filtered(KIND_PARTNER_REQUEST, status)

    def involving(self, player_id, active_only=False):
        found = []
        for record in self._records.values():
            if player_id not in record.participant_ids():
                continue
            if active_only and record.status in CLOSED_STATUSES:
                continue
            found.append(record)
        return found

    def open_records(self):
        return [r for r in self._records.values() if r.status in OPEN_STATUSES]

    def prune_terminal(self, older_than=None):
        """Forget closed records; returns how many were dropped.

        With ``older_than`` only records last updated at or before that time go.
        """
        closed_ids = [
            record_id for record_id, record in self._records.items()
            if record.status in CLOSED_STATUSES
            and (older_than is None or record.updated_at is None or record.updated_at <= older_than)
        ]
        for record_id in closed_ids:
            del self._records[record_id]
        return len(closed_ids)

    def __len__(self):
        return len(self._records)

    def __contains__(self, negotiation_id):
        return negotiation_id in self._records
