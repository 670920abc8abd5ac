"""Arena routes: engine runtime, player loading and error mapping."""
import logging
import threading
from dataclasses import replace
from datetime import timedelta

from flask import current_app, jsonify, request

from pickle_arena.app import db
from pickle_arena.models import ArenaAuditLog, Match, User
from pickle_arena.routes.arena import arena_bp
from pickle_arena.services.arena_events import OutboxDispatcher
from pickle_arena.services.arena_sinks import register_default_sinks
from pickle_arena.services.negotiation import (
    CandidateUnavailable, InvalidTransition, NegotiationEngine, NegotiationError,
    PartnerRequired, StaleNegotiation, policy_from_name,
)
from pickle_arena.services.negotiation_store import ORIGIN_MANUAL, NegotiationStore, side_for
from pickle_arena.services.player_directory import SqlPlayerDirectory

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    PartnerRequired: 409,
    CandidateUnavailable: 409,
    InvalidTransition: 400,
}


class NotAParty(Exception):
    """The acting player is not allowed to act on this negotiation."""


class PlayerNotFound(Exception):
    pass


class NegotiationNotFound(Exception):
    """No negotiation of the requested kind has that id."""


class ArenaRuntime:
    """One negotiation engine per app, with its dispatcher and directory.

    Engine calls are serialised through ``lock`` so the engine only ever
    sees a single caller at a time.
    """

    def __init__(self, engine, dispatcher, directory, expiry_minutes, retention_minutes=10):
        self.engine = engine
        self.dispatcher = dispatcher
        self.directory = directory
        self.expiry_minutes = expiry_minutes
        self.retention_minutes = retention_minutes
        self.lock = threading.RLock()

    def run(self, operation):
        with self.lock:
            try:
                if self.expiry_minutes > 0:
                    self.engine.expire_stale(timedelta(minutes=self.expiry_minutes))
                return operation(self.engine)
            finally:
                self.dispatcher.dispatch_pending()
                if self.retention_minutes is not None and self.retention_minutes >= 0:
                    self.engine.prune_closed(timedelta(minutes=self.retention_minutes))


def _rollback_after_failure(event, handler):
    db.session.rollback()


def _config_minutes(app, key, default):
    try:
        return int(app.config.get(key, default))
    except (TypeError, ValueError):
        return default


def _next_negotiation_id(app):
    """First id past every negotiation already written to the database."""
    with app.app_context():
        last_logged = db.session.query(db.func.max(ArenaAuditLog.negotiation_id)).scalar()
        last_started = db.session.query(db.func.max(Match.challenge_id)).scalar()
    return max(last_logged or 0, last_started or 0) + 1


def init_arena(app):
    engine = NegotiationEngine(
        challenge_policy=policy_from_name(app.config.get('ARENA_CHALLENGE_POLICY')),
        partner_policy=policy_from_name(app.config.get('ARENA_PARTNER_POLICY')),
        store=NegotiationStore(first_id=_next_negotiation_id(app)),
    )
    dispatcher = register_default_sinks(
        OutboxDispatcher(engine.outbox, on_failure=_rollback_after_failure)
    )
    runtime = ArenaRuntime(
        engine, dispatcher, SqlPlayerDirectory(),
        _config_minutes(app, 'ARENA_NEGOTIATION_EXPIRY_MINUTES', 30),
        retention_minutes=_config_minutes(app, 'ARENA_CLOSED_RETENTION_MINUTES', 10),
    )
    app.extensions['arena'] = runtime
    return runtime


def arena_runtime():
    return current_app.extensions['arena']


def _json_payload():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError('Invalid JSON payload')
    return data


def _parse_player_id(raw_value, field_name):
    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        raise ValueError(f'{field_name} must be a numeric player ID') from None
    if value <= 0:
        raise ValueError(f'{field_name} must be a numeric player ID')
    return value


def _parse_origin(raw_value):
    return str(raw_value or ORIGIN_MANUAL).strip().lower()


def _sync_partnership(engine, player):
    """Re-seed a partnership the directory knows about but the engine does not."""
    if player.partner_id is None or engine.partnerships.has_partner(player.id):
        return
    partner_user = db.session.get(User, player.partner_id)
    if partner_user is None or partner_user.partner_id != player.id:
        return
    engine.partnerships.restore(player.ref(), player.partner_ref())


def _load_player(engine, user_id, viewer):
    player = arena_runtime().directory.get_player(user_id, viewer=viewer)
    if player is None:
        raise PlayerNotFound(f'Player {user_id} not found')
    _sync_partnership(engine, player)
    return replace(player, match_intent=engine.partnerships.intent_for(player))


def _current_player(engine):
    user = request.current_user
    return _load_player(engine, user.id, user)


def _party_record(engine, negotiation_id, user_id, kind):
    """The negotiation as seen by ``user_id``; raises unless they take part in it."""
    record = engine.get(negotiation_id)
    if record is None or record.kind != kind:
        raise NegotiationNotFound(f'Negotiation {negotiation_id} not found')
    if user_id not in record.participant_ids():
        raise NotAParty('You are not part of this negotiation')
    return record


def _acting_side(record, user_id):
    side = side_for(record, user_id)
    if side is None:
        raise NotAParty('Only the two negotiating players can do that')
    return side


@arena_bp.errorhandler(NegotiationError)
def _negotiation_error(error):
    status = _ERROR_STATUS.get(type(error), 409)
    if isinstance(error, StaleNegotiation):
        status = 404 if error.negotiation_id not in arena_runtime().engine.store else 409
    logger.info('Arena request rejected (%s): %s', error.kind, error.message)
    return jsonify({'error': error.message, 'error_kind': error.kind}), status


@arena_bp.errorhandler(ValueError)
def _validation_error(error):
    return jsonify({'error': str(error), 'error_kind': 'ValidationError'}), 400


@arena_bp.errorhandler(NotAParty)
def _not_a_party(error):
    return jsonify({'error': str(error), 'error_kind': 'NotAParty'}), 403


@arena_bp.errorhandler(NegotiationNotFound)
def _negotiation_not_found(error):
    return jsonify({'error': str(error), 'error_kind': 'NegotiationNotFound'}), 404


@arena_bp.errorhandler(PlayerNotFound)
def _player_not_found(error):
    return jsonify({'error': str(error), 'error_kind': 'PlayerNotFound'}), 404
