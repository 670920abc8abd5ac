"""SQL-backed player directory feeding the arena discovery pool."""
import math

from pickle_arena.app import db
from pickle_arena.models import User
from pickle_arena.services.players import (
    Player, map_tier, normalize_intent, normalize_status,
)

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1, lon1, lat2, lon2):
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.asin(math.sqrt(a))


def _distance_between(viewer, user):
    if viewer is None:
        return None
    if viewer.id == user.id:
        return 0.0
    coords = (viewer.latitude, viewer.longitude, user.latitude, user.longitude)
    if any(value is None for value in coords):
        return None
    return haversine_km(*coords)


def player_from_user(user, viewer=None):
    partner = user.partner if user.partner_id else None
    return Player(
        id=user.id,
        name=user.display_name,
        tier=map_tier(user.tier),
        ranking_points=max(0, int(user.ranking_points or 0)),
        wins=int(user.wins or 0),
        losses=int(user.losses or 0),
        distance_km=_distance_between(viewer, user),
        status=normalize_status(user.availability_status),
        match_intent=normalize_intent(user.match_intent),
        partner_id=partner.id if partner else None,
        partner_name=partner.display_name if partner else '',
    )


class SqlPlayerDirectory:
    """Builds arena players from ``User`` rows, with distances from a viewer."""

    def get_player(self, user_id, viewer=None):
        user = db.session.get(User, user_id)
        if user is None:
            return None
        return player_from_user(user, viewer=viewer)

    def get_candidates(self, viewer_id):
        viewer = db.session.get(User, viewer_id)
        users = User.query.filter(User.id != viewer_id).order_by(User.id.asc()).all()
        return [player_from_user(user, viewer=viewer) for user in users]
