"""Arena doubles partner routes: requests, ready check and the current partnership."""
from flask import jsonify, request

from pickle_arena.auth_utils import login_required
from pickle_arena.routes.arena import arena_bp
from pickle_arena.routes.arena.helpers import (
    NotAParty, _acting_side, _current_player, _json_payload, _load_player,
    _parse_origin, _parse_player_id, _party_record, arena_runtime,
)
from pickle_arena.services.negotiation_store import KIND_PARTNER_REQUEST, side_for


def _request_view(record, user_id):
    data = record.to_dict()
    data['my_side'] = side_for(record, user_id)
    return data


def _partnership_view(partnership, user_id):
    if partnership is None:
        return None
    data = partnership.to_dict()
    partner = partnership.other(user_id)
    data['partner'] = partner.to_dict() if partner else None
    return data


@arena_bp.route('/partners/requests', methods=['POST'])
@login_required
def create_partner_request():
    """Ask another player to team up for doubles."""
    data = _json_payload()
    target_id = _parse_player_id(data.get('target_id'), 'target_id')
    message = str(data.get('message') or '').strip()[:500]
    origin = _parse_origin(data.get('created_via'))
    user = request.current_user

    def _create(engine):
        requester = _current_player(engine)
        target = _load_player(engine, target_id, user)
        return engine.create_partner_request(
            requester, target, message=message, created_via=origin, actor=user.id,
        )

    record = arena_runtime().run(_create)
    return jsonify({'request': _request_view(record, user.id)}), 201


@arena_bp.route('/partners/requests/<int:request_id>/accept', methods=['POST'])
@login_required
def accept_partner_request(request_id):
    user_id = request.current_user.id

    def _accept(engine):
        record = _party_record(engine, request_id, user_id, KIND_PARTNER_REQUEST)
        if _acting_side(record, user_id) != 'target':
            raise NotAParty('Only the invited player can accept')
        return engine.accept(request_id, actor=user_id)

    record = arena_runtime().run(_accept)
    return jsonify({'request': _request_view(record, user_id)})


@arena_bp.route('/partners/requests/<int:request_id>/ready', methods=['POST'])
@login_required
def ready_partner_request(request_id):
    data = _json_payload()
    ready = data.get('ready', True)
    if not isinstance(ready, bool):
        raise ValueError('ready must be true or false')
    user_id = request.current_user.id

    def _ready(engine):
        record = _party_record(engine, request_id, user_id, KIND_PARTNER_REQUEST)
        side = _acting_side(record, user_id)
        updated = engine.set_ready(request_id, side, ready=ready, actor=user_id)
        return updated, engine.partnerships.partnership_for(user_id)

    record, partnership = arena_runtime().run(_ready)
    return jsonify({
        'request': _request_view(record, user_id),
        'accepted': record.status == 'accepted',
        'partnership': _partnership_view(partnership, user_id),
    })


@arena_bp.route('/partners/requests/<int:request_id>/decline', methods=['POST'])
@login_required
def decline_partner_request(request_id):
    user_id = request.current_user.id

    def _decline(engine):
        _party_record(engine, request_id, user_id, KIND_PARTNER_REQUEST)
        return engine.decline(request_id, actor=user_id)

    record = arena_runtime().run(_decline)
    return jsonify({'request': _request_view(record, user_id)})


@arena_bp.route('/partners', methods=['GET'])
@login_required
def get_partnership():
    """Current partnership plus open partner requests in both directions."""
    user_id = request.current_user.id

    def _snapshot(engine):
        player = _current_player(engine)
        requests = [
            record for record in engine.list_for(user_id)
            if record.kind == KIND_PARTNER_REQUEST
        ]
        return player, engine.partnerships.partnership_for(user_id), requests

    player, partnership, records = arena_runtime().run(_snapshot)
    views = [_request_view(record, user_id) for record in records]
    return jsonify({
        'match_intent': player.match_intent,
        'partnership': _partnership_view(partnership, user_id),
        'incoming': [v for v in views if v['my_side'] == 'target'],
        'outgoing': [v for v in views if v['my_side'] == 'requester'],
    })


@arena_bp.route('/partners', methods=['DELETE'])
@login_required
def dissolve_partnership():
    user_id = request.current_user.id

    def _dissolve(engine):
        _current_player(engine)
        return engine.dissolve_partnership(user_id)

    partnership = arena_runtime().run(_dissolve)
    if partnership is None:
        return jsonify({'error': 'You do not have a doubles partner'}), 404
    return jsonify({
        'message': 'Partnership dissolved',
        'partnership': _partnership_view(partnership, user_id),
    })
