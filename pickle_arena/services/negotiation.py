"""
Arena negotiation state machine.

Challenges:        pending -> ready-check -> confirmed -> started
                   pending | ready-check -> declined | expired
Partner requests:  pending -> ready-check -> accepted
                   pending | ready-check -> declined | expired

What ``accept`` does is decided by an accept policy. With the ready-check
policy both parties must then flag themselves ready; the record advances on
its own once both flags are set. With the immediate policy accepting is
enough.

Every transition is applied to local state right away and reported to the
outbox; nothing here waits on delivery to the other player.
"""
import logging
from datetime import timedelta

from pickle_arena.services.arena_events import (
    EVENT_MATCH_READY, EVENT_MATCH_STARTED, EVENT_TRANSITION, EventOutbox,
)
from pickle_arena.services.negotiation_store import (
    CHALLENGE_DOUBLES_TEAM, CHALLENGE_MATCH_TYPES, CLOSED_STATUSES, ORIGINS,
    STATUS_CONFIRMED, STATUS_DECLINED, STATUS_EXPIRED, STATUS_PENDING,
    STATUS_READY_CHECK, STATUS_STARTED,
    Challenge, NegotiationStore, PartnerRequest,
)
from pickle_arena.services.partnerships import PartnershipManager
from pickle_arena.time_utils import utcnow_naive

logger = logging.getLogger(__name__)

POLICY_READY_CHECK = 'ready-check'
POLICY_IMMEDIATE = 'immediate'


# ── Errors ────────────────────────────────────────────────────────────

class NegotiationError(Exception):
    kind = 'NegotiationError'

    def __init__(self, message, negotiation_id=None):
        super().__init__(message)
        self.message = message
        self.negotiation_id = negotiation_id


class PartnerRequired(NegotiationError):
    kind = 'PartnerRequired'


class StaleNegotiation(NegotiationError):
    kind = 'StaleNegotiation'


class InvalidTransition(NegotiationError):
    kind = 'InvalidTransition'


class CandidateUnavailable(NegotiationError):
    kind = 'CandidateUnavailable'


# ── Accept policies ───────────────────────────────────────────────────

class ReadyCheckPolicy:
    """Accepting opens a ready check that both parties must complete."""

    name = POLICY_READY_CHECK

    def on_accept(self, record):
        record.status = STATUS_READY_CHECK
        for key in record.ready_status:
            record.ready_status[key] = False


class ImmediateAcceptPolicy:
    """Accepting settles the negotiation straight away."""

    name = POLICY_IMMEDIATE

    def on_accept(self, record):
        for key in record.ready_status:
            record.ready_status[key] = True
        record.status = record.success_status


_POLICIES = {
    POLICY_READY_CHECK: ReadyCheckPolicy,
    POLICY_IMMEDIATE: ImmediateAcceptPolicy,
}


def policy_from_name(name):
    try:
        return _POLICIES[str(name or POLICY_READY_CHECK).strip().lower()]()
    except KeyError:
        raise ValueError(f'Unknown accept policy: {name}') from None


# ── Engine ────────────────────────────────────────────────────────────

class NegotiationEngine:
    """Sole mutator of challenge and partner-request state for one owner."""

    def __init__(self, challenge_policy=None, partner_policy=None, outbox=None,
                 partnerships=None, store=None, clock=utcnow_naive):
        self.challenge_policy = challenge_policy or ReadyCheckPolicy()
        self.partner_policy = partner_policy or ReadyCheckPolicy()
        self.outbox = outbox if outbox is not None else EventOutbox()
        self.partnerships = (
            partnerships if partnerships is not None
            else PartnershipManager(outbox=self.outbox, clock=clock)
        )
        self.store = store if store is not None else NegotiationStore()
        self.clock = clock

    # Lookups

    def get(self, negotiation_id):
        record = self.store.get(negotiation_id)
        return record.copy() if record else None

    def list_for(self, player_id, active_only=True):
        return [r.copy() for r in self.store.involving(player_id, active_only=active_only)]

    # Creation

    def create_challenge(self, challenger, challenged, match_type, message='',
                         created_via='manual', actor=None):
        match_type = str(match_type or '').strip().lower()
        if match_type not in CHALLENGE_MATCH_TYPES:
            raise ValueError(f'Invalid challenge match type: {match_type}')
        _check_origin(created_via)
        if challenger.id == challenged.id:
            raise InvalidTransition('Players cannot challenge themselves')
        if not challenged.is_challengeable:
            raise CandidateUnavailable(f'{challenged.name} is not available to play')

        challenger_partner = None
        challenged_partner = None
        if match_type == CHALLENGE_DOUBLES_TEAM:
            challenger_partner = self.partnerships.partner_of(challenger.id)
            if challenger_partner is None:
                raise PartnerRequired('A team challenge needs a doubles partner')
            challenged_partner = self.partnerships.partner_of(challenged.id)
            if challenged_partner is not None and challenged_partner.id in {challenger.id, challenger_partner.id}:
                raise InvalidTransition('Cannot challenge your own team')

        now = self.clock()
        challenge = Challenge(
            id=self.store.next_id(),
            challenger=challenger.ref(),
            challenged=challenged.ref(),
            challenger_partner=challenger_partner,
            challenged_partner=challenged_partner,
            match_type=match_type,
            message=str(message or ''),
            created_via=created_via,
            created_at=now,
            updated_at=now,
        )
        self.store.add(challenge)
        self._record_transition(challenge, None, actor or challenger.id)
        return challenge.copy()

    def create_partner_request(self, requester, target, message='', created_via='manual', actor=None):
        _check_origin(created_via)
        if requester.id == target.id:
            raise InvalidTransition('Players cannot partner with themselves')
        if not target.is_challengeable:
            raise CandidateUnavailable(f'{target.name} is not available to partner')
        current = self.partnerships.partner_of(requester.id)
        if current is not None and current.id == target.id:
            raise InvalidTransition(f'Already partnered with {target.name}')

        now = self.clock()
        request = PartnerRequest(
            id=self.store.next_id(),
            requester=requester.ref(),
            target=target.ref(),
            message=str(message or ''),
            created_via=created_via,
            created_at=now,
            updated_at=now,
        )
        self.store.add(request)
        self._record_transition(request, None, actor or requester.id)
        return request.copy()

    # Transitions

    def accept(self, negotiation_id, actor=None):
        record = self._open_record(negotiation_id)
        if record.status != STATUS_PENDING:
            raise InvalidTransition(
                f'Cannot accept a negotiation in {record.status}', negotiation_id,
            )
        self._check_teams(record)
        previous = record.status
        self._policy_for(record).on_accept(record)
        self._after_change(record, previous, actor)
        return record.copy()

    def set_ready(self, negotiation_id, side, ready=True, actor=None):
        record = self._open_record(negotiation_id)
        if record.status != STATUS_READY_CHECK:
            raise InvalidTransition(
                f'Ready flags can only change during ready-check, not {record.status}',
                negotiation_id,
            )
        if side not in record.sides:
            raise InvalidTransition(f'Unknown side: {side}', negotiation_id)

        flag = f'{side}_ready'
        ready = bool(ready)
        if record.ready_status[flag] == ready:
            return record.copy()

        if ready and all(record.ready_status[f'{other}_ready'] for other in record.sides if other != side):
            self._check_teams(record)
        record.ready_status[flag] = ready
        if all(record.ready_status.values()):
            record.status = record.success_status
            self._after_change(record, STATUS_READY_CHECK, actor)
        else:
            record.updated_at = self.clock()
            self._record_transition(
                record, STATUS_READY_CHECK, actor,
                reason=f'{side}_ready' if ready else f'{side}_unready',
            )
        return record.copy()

    def decline(self, negotiation_id, actor=None):
        record = self._open_record(negotiation_id)
        if record.status not in (STATUS_PENDING, STATUS_READY_CHECK):
            raise InvalidTransition(
                f'Cannot decline a negotiation in {record.status}', negotiation_id,
            )
        previous = record.status
        reason = 'withdrawn' if previous == STATUS_READY_CHECK else 'declined'
        for key in record.ready_status:
            record.ready_status[key] = False
        record.status = STATUS_DECLINED
        record.updated_at = self.clock()
        self._record_transition(record, previous, actor, reason=reason)
        return record.copy()

    def expire(self, negotiation_id):
        record = self._open_record(negotiation_id)
        if record.status not in (STATUS_PENDING, STATUS_READY_CHECK):
            raise InvalidTransition(
                f'Cannot expire a negotiation in {record.status}', negotiation_id,
            )
        previous = record.status
        for key in record.ready_status:
            record.ready_status[key] = False
        record.status = STATUS_EXPIRED
        record.updated_at = self.clock()
        self._record_transition(record, previous, None, reason='expired')
        return record.copy()

    def expire_stale(self, max_age):
        """Expire open negotiations created more than ``max_age`` ago."""
        if not isinstance(max_age, timedelta):
            max_age = timedelta(minutes=float(max_age))
        cutoff = self.clock() - max_age
        expired = []
        for record in self.store.open_records():
            if record.created_at and record.created_at < cutoff:
                expired.append(self.expire(record.id))
        return expired

    def start(self, negotiation_id, actor=None):
        record = self._open_record(negotiation_id)
        if record.kind != Challenge.kind or record.status != STATUS_CONFIRMED:
            raise InvalidTransition('Only confirmed challenges can start', negotiation_id)
        self._check_teams(record)
        record.status = STATUS_STARTED
        record.updated_at = self.clock()
        self.store.remove(record.id)
        self._record_transition(record, STATUS_CONFIRMED, actor, reason='started')
        team1, team2 = record.teams()
        self.outbox.append(EVENT_MATCH_STARTED, {
            'challenge_id': record.id,
            'participant_ids': record.participant_ids(),
            'match_type': record.match_type,
            'team1': team1,
            'team2': team2,
        })
        return record.copy()

    def dissolve_partnership(self, player_id):
        return self.partnerships.dissolve_partnership(player_id)

    def prune_closed(self, max_age):
        """Forget closed records last touched more than ``max_age`` ago."""
        if not isinstance(max_age, timedelta):
            max_age = timedelta(minutes=float(max_age))
        return self.store.prune_terminal(older_than=self.clock() - max_age)

    # Internals

    def _policy_for(self, record):
        if record.kind == Challenge.kind:
            return self.challenge_policy
        return self.partner_policy

    def _check_teams(self, record):
        """A team challenge only proceeds while both pairings it named still stand."""
        if record.kind != Challenge.kind or record.match_type != CHALLENGE_DOUBLES_TEAM:
            return
        current = self.partnerships.partner_of(record.challenger.id)
        if current is None or current.id != record.challenger_partner.id:
            raise PartnerRequired(
                f'{record.challenger.name} is no longer partnered with '
                f'{record.challenger_partner.name}',
                record.id,
            )
        if record.challenged_partner is not None:
            current = self.partnerships.partner_of(record.challenged.id)
            if current is None or current.id != record.challenged_partner.id:
                raise InvalidTransition(
                    f'{record.challenged.name} is no longer partnered with '
                    f'{record.challenged_partner.name}',
                    record.id,
                )

    def _open_record(self, negotiation_id):
        record = self.store.get(negotiation_id)
        if record is None:
            logger.info('Rejected transition on unknown negotiation %s', negotiation_id)
            raise StaleNegotiation(f'Negotiation {negotiation_id} not found', negotiation_id)
        if record.status in CLOSED_STATUSES:
            logger.info('Rejected transition on %s negotiation %s', record.status, negotiation_id)
            raise StaleNegotiation(
                f'Negotiation {negotiation_id} is already {record.status}', negotiation_id,
            )
        return record

    def _after_change(self, record, previous, actor):
        record.updated_at = self.clock()
        self._record_transition(record, previous, actor)
        if record.status == STATUS_CONFIRMED:
            self.outbox.append(EVENT_MATCH_READY, {
                'challenge_id': record.id,
                'participant_ids': record.participant_ids(),
                'match_type': record.match_type,
            })
        elif record.status == record.success_status:
            # Partner request settled: pair the two players.
            self.partnerships.form_partnership(record.requester, record.target)

    def _record_transition(self, record, from_state, actor, reason=None):
        logger.info(
            '%s %s: %s -> %s%s',
            record.kind, record.id, from_state, record.status,
            f' ({reason})' if reason else '',
        )
        self.outbox.append(EVENT_TRANSITION, {
            'negotiation_id': record.id,
            'kind': record.kind,
            'from_state': from_state,
            'to_state': record.status,
            'actor': actor,
            'timestamp': record.updated_at.isoformat() if record.updated_at else None,
            'reason': reason,
            'participant_ids': record.participant_ids(),
        })


def _check_origin(created_via):
    if created_via not in ORIGINS:
        raise ValueError(f'Invalid negotiation origin: {created_via}')
