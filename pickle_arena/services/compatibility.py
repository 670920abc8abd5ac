"""
Compatibility scoring for arena opponents and doubles partners.

A candidate is compared against the viewing player on three axes, each
mapped to a 0..1 closeness value that falls off linearly across a fixed
window:

- Ranking points: window of 1000 points, weight 0.5
- Win rate:       window of 0.30,        weight 0.3
- Experience:     window of 50 games,    weight 0.2

The weighted sum is scaled to 0..100 and floored at 20 so that every
candidate stays challengeable (an upset is always possible).
"""
import math

POINTS_WINDOW = 1000.0
WIN_RATE_WINDOW = 0.3
EXPERIENCE_WINDOW = 50.0

POINTS_WEIGHT = 0.5
WIN_RATE_WEIGHT = 0.3
EXPERIENCE_WEIGHT = 0.2

SCORE_FLOOR = 20
SCORE_CEILING = 100

HIGH_BAND_MIN = 80
MEDIUM_BAND_MIN = 60


def _closeness(value, other, window):
    """Linear closeness in [0, 1]; 1 when equal, 0 at or beyond the window."""
    gap = abs(value - other)
    return max(0.0, min(1.0, (window - gap) / window))


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def compatibility_score(player, candidate):
    """Score how evenly matched ``candidate`` is against ``player`` (20..100)."""
    points = _closeness(candidate.ranking_points or 0, player.ranking_points or 0, POINTS_WINDOW)
    win_rate = _closeness(candidate.win_rate, player.win_rate, WIN_RATE_WINDOW)
    experience = _closeness(candidate.games_played, player.games_played, EXPERIENCE_WINDOW)

    raw = 100.0 * (
        POINTS_WEIGHT * points
        + WIN_RATE_WEIGHT * win_rate
        + EXPERIENCE_WEIGHT * experience
    )
    return max(SCORE_FLOOR, min(SCORE_CEILING, _round_half_up(raw)))


def compatibility_band(score):
    if score >= HIGH_BAND_MIN:
        return 'high'
    if score >= MEDIUM_BAND_MIN:
        return 'medium'
    return 'low'


def annotate_candidates(player, candidates):
    """Attach score and band to each candidate, keeping input order."""
    annotated = []
    for candidate in candidates:
        score = compatibility_score(player, candidate)
        annotated.append({
            'player': candidate,
            'score': score,
            'band': compatibility_band(score),
        })
    return annotated


def rank_by_compatibility(player, candidates):
    """Annotated candidates, best match first (stable on ties)."""
    return sorted(
        annotate_candidates(player, candidates),
        key=lambda item: item['score'],
        reverse=True,
    )
