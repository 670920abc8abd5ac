"""Arena lobby discovery routes."""
from dataclasses import replace

from flask import current_app, jsonify, request

from pickle_arena.auth_utils import login_required
from pickle_arena.routes.arena import arena_bp
from pickle_arena.routes.arena.helpers import _current_player, arena_runtime
from pickle_arena.services.compatibility import annotate_candidates, rank_by_compatibility
from pickle_arena.services.discovery import (
    FILTER_DOUBLES, MODE_GLOBAL, MODE_PROXIMITY, DiscoveryParams, clamp_radius,
    discovery_counts, filter_candidates,
)
from pickle_arena.services.players import INTENT_DOUBLES_LOOKING


def _candidate_pool(engine, viewer_id):
    pool = arena_runtime().directory.get_candidates(viewer_id)
    return [replace(p, match_intent=engine.partnerships.intent_for(p)) for p in pool]


def _annotated_dict(item):
    data = item['player'].to_dict()
    data['compatibility'] = item['score']
    data['compatibility_band'] = item['band']
    return data


@arena_bp.route('/players', methods=['GET'])
@login_required
def list_players():
    """Players visible in the lobby (proximity) or in global search, with compatibility."""
    mode = str(request.args.get('mode') or MODE_PROXIMITY).strip().lower()
    default_radius = current_app.config.get('ARENA_DEFAULT_RADIUS_KM', 2.0)
    params = DiscoveryParams(
        radius_km=clamp_radius(request.args.get('radius_km', default_radius), default_radius),
        search=str(request.args.get('q') or '').strip(),
        match_filter=str(request.args.get('match_filter') or 'all').strip().lower(),
    )

    def _discover(engine):
        viewer = _current_player(engine)
        pool = _candidate_pool(engine, viewer.id)
        visible = filter_candidates(pool, mode, params)
        return viewer, pool, annotate_candidates(viewer, visible)

    viewer, pool, annotated = arena_runtime().run(_discover)
    return jsonify({
        'mode': mode,
        'radius_km': params.radius_km if mode == MODE_PROXIMITY else None,
        'search': params.search,
        'match_filter': params.match_filter,
        'viewer': viewer.to_dict(),
        'players': [_annotated_dict(item) for item in annotated],
        'counts': discovery_counts(pool),
    })


@arena_bp.route('/partners/suggestions', methods=['GET'])
@login_required
def partner_suggestions():
    """Doubles-seeking players anywhere, best compatibility first."""
    try:
        limit = int(request.args.get('limit', 10))
    except (TypeError, ValueError):
        limit = 10
    limit = max(1, min(limit, 50))

    def _suggest(engine):
        viewer = _current_player(engine)
        pool = _candidate_pool(engine, viewer.id)
        doubles = filter_candidates(pool, MODE_GLOBAL, DiscoveryParams(match_filter=FILTER_DOUBLES))
        seeking = [
            p for p in doubles
            if p.match_intent == INTENT_DOUBLES_LOOKING and p.is_challengeable
        ]
        return rank_by_compatibility(viewer, seeking)[:limit]

    ranked = arena_runtime().run(_suggest)
    return jsonify({'suggestions': [_annotated_dict(item) for item in ranked]})
