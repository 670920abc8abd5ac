"""Doubles partnerships: at most one active partner per player."""
import logging
from dataclasses import dataclass

from pickle_arena.services.arena_events import (
    EVENT_PARTNERSHIP_DISSOLVED, EVENT_PARTNERSHIP_FORMED,
)
from pickle_arena.services.players import INTENT_DOUBLES_LOOKING, INTENT_DOUBLES_TEAM
from pickle_arena.time_utils import utcnow_naive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Partnership:
    player_a: object
    player_b: object
    formed_at: object = None

    @property
    def member_ids(self):
        return frozenset((self.player_a.id, self.player_b.id))

    def other(self, player_id):
        if self.player_a.id == player_id:
            return self.player_b
        if self.player_b.id == player_id:
            return self.player_a
        return None

    def to_dict(self):
        return {
            'player_a': self.player_a.to_dict(),
            'player_b': self.player_b.to_dict(),
            'formed_at': self.formed_at.isoformat() if self.formed_at else None,
        }


class PartnershipManager:
    """Owns partnership pairs and the doubles intent they imply."""

    def __init__(self, outbox=None, clock=utcnow_naive):
        self.outbox = outbox
        self.clock = clock
        self._by_player = {}
        self._intents = {}

    def partnership_for(self, player_id):
        return self._by_player.get(player_id)

    def partner_of(self, player_id):
        partnership = self._by_player.get(player_id)
        return partnership.other(player_id) if partnership else None

    def has_partner(self, player_id):
        return player_id in self._by_player

    def intent_for(self, player):
        """Current match intent, overriding the directory once a pairing changed it."""
        if self.has_partner(player.id):
            return INTENT_DOUBLES_TEAM
        return self._intents.get(player.id, player.match_intent)

    def clear_intent(self, player_id):
        """Drop an intent override so the directory value applies again."""
        self._intents.pop(player_id, None)

    def all(self):
        seen = []
        for partnership in self._by_player.values():
            if partnership not in seen:
                seen.append(partnership)
        return seen

    def form_partnership(self, player_a, player_b):
        """Pair two players, first dissolving any partnership either holds."""
        if player_a.id == player_b.id:
            raise ValueError('A player cannot partner with themselves')

        existing = self._by_player.get(player_a.id)
        if existing and existing.member_ids == {player_a.id, player_b.id}:
            return existing

        for player_id in (player_a.id, player_b.id):
            if player_id in self._by_player:
                self.dissolve_partnership(player_id, reason='replaced')

        partnership = Partnership(player_a=player_a, player_b=player_b, formed_at=self.clock())
        self._by_player[player_a.id] = partnership
        self._by_player[player_b.id] = partnership
        self._intents[player_a.id] = INTENT_DOUBLES_TEAM
        self._intents[player_b.id] = INTENT_DOUBLES_TEAM
        logger.info('Partnership formed: %s + %s', player_a.id, player_b.id)
        if self.outbox is not None:
            self.outbox.append(EVENT_PARTNERSHIP_FORMED, {
                'player_a_id': player_a.id,
                'player_b_id': player_b.id,
            })
        return partnership

    def restore(self, player_a, player_b, formed_at=None):
        """Re-seed a pairing already known to the directory, without emitting events."""
        if self.has_partner(player_a.id) or self.has_partner(player_b.id):
            return self._by_player.get(player_a.id)
        partnership = Partnership(player_a=player_a, player_b=player_b, formed_at=formed_at)
        self._by_player[player_a.id] = partnership
        self._by_player[player_b.id] = partnership
        return partnership

    def dissolve_partnership(self, player_id, reason='dissolved'):
        """Break up ``player_id``'s partnership; returns it, or None if there was none."""
        partnership = self._by_player.pop(player_id, None)
        if partnership is None:
            return None
        other = partnership.other(player_id)
        self._by_player.pop(other.id, None)
        self._intents[partnership.player_a.id] = INTENT_DOUBLES_LOOKING
        self._intents[partnership.player_b.id] = INTENT_DOUBLES_LOOKING
        logger.info(
            'Partnership dissolved (%s): %s + %s',
            reason, partnership.player_a.id, partnership.player_b.id,
        )
        if self.outbox is not None:
            self.outbox.append(EVENT_PARTNERSHIP_DISSOLVED, {
                'player_a_id': partnership.player_a.id,
                'player_b_id': partnership.player_b.id,
                'reason': reason,
            })
        return partnership
