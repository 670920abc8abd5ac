"""Arena challenge routes: send, accept, ready check, decline and start."""
from flask import jsonify, request

from pickle_arena.auth_utils import login_required
from pickle_arena.routes.arena import arena_bp
from pickle_arena.routes.arena.helpers import (
    NotAParty, _acting_side, _current_player, _json_payload, _load_player,
    _parse_origin, _parse_player_id, _party_record, arena_runtime,
)
from pickle_arena.services.negotiation_store import KIND_CHALLENGE, side_for


def _challenge_view(record, user_id):
    data = record.to_dict()
    data['my_side'] = side_for(record, user_id)
    data['participant_ids'] = record.participant_ids()
    return data


@arena_bp.route('/challenges', methods=['POST'])
@login_required
def create_challenge():
    """Challenge another player to a singles or team match."""
    data = _json_payload()
    challenged_id = _parse_player_id(data.get('challenged_id'), 'challenged_id')
    match_type = str(data.get('match_type') or 'singles').strip().lower()
    message = str(data.get('message') or '').strip()[:500]
    origin = _parse_origin(data.get('created_via'))
    user = request.current_user

    def _create(engine):
        challenger = _current_player(engine)
        challenged = _load_player(engine, challenged_id, user)
        return engine.create_challenge(
            challenger, challenged, match_type,
            message=message, created_via=origin, actor=user.id,
        )

    challenge = arena_runtime().run(_create)
    return jsonify({'challenge': _challenge_view(challenge, user.id)}), 201


@arena_bp.route('/challenges', methods=['GET'])
@login_required
def list_challenges():
    """Open challenges involving the current player, split by direction."""
    user_id = request.current_user.id
    include_closed = str(request.args.get('include_closed') or '').strip().lower() in {'1', 'true', 'yes'}

    def _list(engine):
        return [
            record for record in engine.list_for(user_id, active_only=not include_closed)
            if record.kind == KIND_CHALLENGE
        ]

    records = arena_runtime().run(_list)
    views = [_challenge_view(record, user_id) for record in records]
    return jsonify({
        'challenges': views,
        'incoming': [v for v in views if v['my_side'] == 'challenged'],
        'outgoing': [v for v in views if v['my_side'] == 'challenger'],
    })


@arena_bp.route('/challenges/<int:challenge_id>', methods=['GET'])
@login_required
def get_challenge(challenge_id):
    """Current status and ready flags of one challenge."""
    user_id = request.current_user.id
    record = arena_runtime().run(
        lambda engine: _party_record(engine, challenge_id, user_id, KIND_CHALLENGE)
    )
    return jsonify({'challenge': _challenge_view(record, user_id)})


@arena_bp.route('/challenges/<int:challenge_id>/accept', methods=['POST'])
@login_required
def accept_challenge(challenge_id):
    user_id = request.current_user.id

    def _accept(engine):
        record = _party_record(engine, challenge_id, user_id, KIND_CHALLENGE)
        if _acting_side(record, user_id) != 'challenged':
            raise NotAParty('Only the challenged player can accept')
        return engine.accept(challenge_id, actor=user_id)

    record = arena_runtime().run(_accept)
    return jsonify({'challenge': _challenge_view(record, user_id)})


@arena_bp.route('/challenges/<int:challenge_id>/ready', methods=['POST'])
@login_required
def ready_challenge(challenge_id):
    """Flag (or un-flag) the current player as ready during the ready check."""
    data = _json_payload()
    ready = data.get('ready', True)
    if not isinstance(ready, bool):
        raise ValueError('ready must be true or false')
    user_id = request.current_user.id

    def _ready(engine):
        record = _party_record(engine, challenge_id, user_id, KIND_CHALLENGE)
        side = _acting_side(record, user_id)
        return engine.set_ready(challenge_id, side, ready=ready, actor=user_id)

    record = arena_runtime().run(_ready)
    return jsonify({
        'challenge': _challenge_view(record, user_id),
        'confirmed': record.status == 'confirmed',
    })


@arena_bp.route('/challenges/<int:challenge_id>/decline', methods=['POST'])
@login_required
def decline_challenge(challenge_id):
    """Decline (challenged), cancel (challenger) or withdraw after accepting."""
    user_id = request.current_user.id

    def _decline(engine):
        record = _party_record(engine, challenge_id, user_id, KIND_CHALLENGE)
        _acting_side(record, user_id)
        return engine.decline(challenge_id, actor=user_id)

    record = arena_runtime().run(_decline)
    return jsonify({'challenge': _challenge_view(record, user_id)})


@arena_bp.route('/challenges/<int:challenge_id>/start', methods=['POST'])
@login_required
def start_challenge(challenge_id):
    """Hand a confirmed challenge to match recording."""
    user_id = request.current_user.id

    def _start(engine):
        _party_record(engine, challenge_id, user_id, KIND_CHALLENGE)
        return engine.start(challenge_id, actor=user_id)

    record = arena_runtime().run(_start)
    from pickle_arena.models import Match
    match = (
        Match.query.filter(Match.challenge_id == record.id, Match.created_at >= record.updated_at)
        .order_by(Match.id.desc()).first()
    )
    return jsonify({
        'challenge': _challenge_view(record, user_id),
        'match': match.to_dict() if match else None,
    })
