"""Delivery sinks for arena outbox events: audit log, notifications, matches, profiles."""
import json
import logging

from pickle_arena.app import db, socketio
from pickle_arena.models import ArenaAuditLog, Match, MatchPlayer, Notification, User
from pickle_arena.services.arena_events import (
    EVENT_MATCH_READY, EVENT_MATCH_STARTED, EVENT_PARTNERSHIP_DISSOLVED,
    EVENT_PARTNERSHIP_FORMED, EVENT_TRANSITION,
)
from pickle_arena.services.players import (
    INTENT_DOUBLES_LOOKING, INTENT_DOUBLES_TEAM, STATUS_IN_MATCH,
)
from pickle_arena.time_utils import utcnow_naive

logger = logging.getLogger(__name__)

# (kind, to_state, reason) -> notification type; None reason matches any.
_TRANSITION_NOTIFICATIONS = {
    ('challenge', 'pending', None): 'arena_challenge_invite',
    ('challenge', 'ready-check', None): 'arena_challenge_accepted',
    ('challenge', 'declined', 'declined'): 'arena_challenge_declined',
    ('challenge', 'declined', 'withdrawn'): 'arena_challenge_withdrawn',
    ('challenge', 'expired', None): 'arena_challenge_expired',
    ('partner_request', 'pending', None): 'arena_partner_invite',
    ('partner_request', 'ready-check', None): 'arena_partner_accepted',
    ('partner_request', 'declined', 'declined'): 'arena_partner_declined',
    ('partner_request', 'declined', 'withdrawn'): 'arena_partner_withdrawn',
    ('partner_request', 'expired', None): 'arena_partner_expired',
}


def _names_by_id(user_ids):
    wanted = {user_id for user_id in user_ids if user_id is not None}
    users = User.query.filter(User.id.in_(wanted)).all()
    return {user.id: user.display_name for user in users}


def _notification_type(payload):
    # Ready toggles stay inside ready-check and only go out as live updates.
    if payload.get('from_state') == payload.get('to_state'):
        return None
    key = (payload.get('kind'), payload.get('to_state'))
    return (
        _TRANSITION_NOTIFICATIONS.get(key + (payload.get('reason'),))
        or _TRANSITION_NOTIFICATIONS.get(key + (None,))
    )


def _notification_content(notif_type, payload, names):
    actor_name = names.get(payload.get('actor'), 'Someone')
    negotiation_id = payload.get('negotiation_id')
    messages = {
        'arena_challenge_invite': f'{actor_name} challenged you in the Arena.',
        'arena_challenge_accepted': f'{actor_name} accepted your challenge. Ready up to play.',
        'arena_challenge_declined': f'{actor_name} declined arena challenge #{negotiation_id}.',
        'arena_challenge_withdrawn': f'{actor_name} withdrew from arena challenge #{negotiation_id}.',
        'arena_challenge_expired': f'Arena challenge #{negotiation_id} expired.',
        'arena_partner_invite': f'{actor_name} wants to partner up for doubles.',
        'arena_partner_accepted': f'{actor_name} accepted your partner request. Ready up to team up.',
        'arena_partner_declined': f'{actor_name} declined your partner request.',
        'arena_partner_withdrawn': f'{actor_name} withdrew from partner request #{negotiation_id}.',
        'arena_partner_expired': f'Partner request #{negotiation_id} expired.',
    }
    return messages[notif_type]


def _emit_arena_update(reason, payload):
    socketio.emit('arena_update', {
        'reason': reason,
        'payload': payload,
        'updated_at': utcnow_naive().isoformat(),
    })


def record_audit_event(event):
    payload = event.payload
    db.session.add(ArenaAuditLog(
        negotiation_id=payload['negotiation_id'],
        kind=payload['kind'],
        from_state=payload.get('from_state'),
        to_state=payload['to_state'],
        reason=payload.get('reason'),
        actor_id=payload.get('actor'),
        payload_json=json.dumps(payload),
        created_at=event.created_at,
    ))
    db.session.commit()


def notify_participants(event):
    """Tell the other party about a transition, then push a live update."""
    payload = event.payload
    notif_type = _notification_type(payload)
    if notif_type:
        participant_ids = payload.get('participant_ids') or []
        names = _names_by_id(participant_ids + [payload.get('actor')])
        content = _notification_content(notif_type, payload, names)
        for user_id in participant_ids:
            if user_id == payload.get('actor'):
                continue
            db.session.add(Notification(
                user_id=user_id,
                notif_type=notif_type,
                content=content,
                reference_id=payload.get('negotiation_id'),
            ))
        db.session.commit()
    _emit_arena_update(payload.get('to_state') or event.event_type, payload)


def notify_match_ready(event):
    payload = event.payload
    for user_id in payload['participant_ids']:
        db.session.add(Notification(
            user_id=user_id,
            notif_type='arena_match_ready',
            content='Everyone is ready. Your arena match is confirmed.',
            reference_id=payload['challenge_id'],
        ))
    db.session.commit()
    _emit_arena_update('match_ready', payload)


def record_started_match(event):
    """Persist the match a confirmed challenge turned into."""
    payload = event.payload
    all_ids = payload['team1'] + payload['team2']
    players_by_id = {
        user.id: user for user in User.query.filter(User.id.in_(all_ids)).all()
    }
    match = Match(
        challenge_id=payload['challenge_id'],
        match_type=payload['match_type'],
        status='in_progress',
    )
    db.session.add(match)
    db.session.flush()

    for team_num, team_ids in [(1, payload['team1']), (2, payload['team2'])]:
        for uid in team_ids:
            user = players_by_id.get(uid)
            if user is None:
                logger.warning('Match %s: player %s no longer exists', match.id, uid)
                continue
            db.session.add(MatchPlayer(
                match_id=match.id,
                user_id=uid,
                team=team_num,
                elo_before=user.elo_rating,
                ranking_points_before=user.ranking_points,
            ))
            user.availability_status = STATUS_IN_MATCH
    db.session.commit()
    logger.info('Recorded match %s for challenge %s', match.id, payload['challenge_id'])
    _emit_arena_update('match_started', dict(payload, match_id=match.id))


def apply_partnership_change(event):
    """Write partnership intent and partner id back onto both profiles."""
    payload = event.payload
    user_a = db.session.get(User, payload['player_a_id'])
    user_b = db.session.get(User, payload['player_b_id'])
    if user_a is None or user_b is None:
        logger.warning('Partnership event for unknown players: %s', payload)
        return

    if event.event_type == EVENT_PARTNERSHIP_FORMED:
        user_a.partner_id, user_b.partner_id = user_b.id, user_a.id
        user_a.match_intent = user_b.match_intent = INTENT_DOUBLES_TEAM
        for user_id, partner in ((user_a.id, user_b), (user_b.id, user_a)):
            db.session.add(Notification(
                user_id=user_id,
                notif_type='arena_partnership_formed',
                content=f'You and {partner.display_name} are now a doubles team.',
                reference_id=partner.id,
            ))
    else:
        for user, other in ((user_a, user_b), (user_b, user_a)):
            if user.partner_id in (None, other.id):
                user.partner_id = None
                user.match_intent = INTENT_DOUBLES_LOOKING
    db.session.commit()
    _emit_arena_update(event.event_type, payload)


def register_default_sinks(dispatcher):
    dispatcher.register(EVENT_TRANSITION, record_audit_event)
    dispatcher.register(EVENT_TRANSITION, notify_participants)
    dispatcher.register(EVENT_MATCH_READY, notify_match_ready)
    dispatcher.register(EVENT_MATCH_STARTED, record_started_match)
    dispatcher.register(EVENT_PARTNERSHIP_FORMED, apply_partnership_change)
    dispatcher.register(EVENT_PARTNERSHIP_DISSOLVED, apply_partnership_change)
    return dispatcher
