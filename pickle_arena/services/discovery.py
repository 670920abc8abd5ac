"""Arena discovery: which players a viewer can see in the lobby or global search."""
from dataclasses import dataclass

from pickle_arena.services.players import CHALLENGEABLE_STATUSES, INTENT_SINGLES

MODE_PROXIMITY = 'proximity'
MODE_GLOBAL = 'global'
DISCOVERY_MODES = {MODE_PROXIMITY, MODE_GLOBAL}

FILTER_ALL = 'all'
FILTER_SINGLES = 'singles'
FILTER_DOUBLES = 'doubles'
MATCH_FILTERS = {FILTER_ALL, FILTER_SINGLES, FILTER_DOUBLES}

DEFAULT_RADIUS_KM = 2.0
MIN_RADIUS_KM = 0.5
MAX_RADIUS_KM = 5.0


def clamp_radius(radius_km, default=DEFAULT_RADIUS_KM):
    try:
        radius = float(radius_km)
    except (TypeError, ValueError):
        radius = float(default)
    return max(MIN_RADIUS_KM, min(MAX_RADIUS_KM, radius))


@dataclass
class DiscoveryParams:
    radius_km: float = DEFAULT_RADIUS_KM
    search: str = ''
    match_filter: str = FILTER_ALL


def _matches_search(player, term):
    if not term:
        return True
    return term in str(player.name or '').lower()


def _matches_type(player, match_filter):
    intent = str(player.match_intent or '')
    if match_filter == FILTER_SINGLES:
        return intent == INTENT_SINGLES
    if match_filter == FILTER_DOUBLES:
        return 'doubles' in intent
    return True


def _within_radius(player, radius_km):
    if player.distance_km is None:
        return False
    return player.distance_km <= radius_km


def filter_candidates(pool, mode, params=None):
    """Return the visible subset of ``pool`` in its original order.

    Proximity mode keeps players within the (clamped) radius; global mode
    never looks at distance. Search and match-type narrowing apply in both.
    """
    if mode not in DISCOVERY_MODES:
        raise ValueError(f'Unknown discovery mode: {mode}')
    params = params or DiscoveryParams()
    match_filter = str(params.match_filter or FILTER_ALL).strip().lower()
    if match_filter not in MATCH_FILTERS:
        raise ValueError(f'Unknown match filter: {params.match_filter}')

    term = str(params.search or '').strip().lower()
    radius_km = clamp_radius(params.radius_km)

    visible = []
    for player in pool:
        if mode == MODE_PROXIMITY and not _within_radius(player, radius_km):
            continue
        if not _matches_search(player, term):
            continue
        if not _matches_type(player, match_filter):
            continue
        visible.append(player)
    return visible


def discovery_counts(pool):
    players = list(pool)
    return {
        'total': len(players),
        'online': sum(1 for p in players if p.status == 'online'),
        'available': sum(1 for p in players if p.status in CHALLENGEABLE_STATUSES),
    }
