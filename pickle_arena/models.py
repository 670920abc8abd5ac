import json
from pickle_arena.app import db
from pickle_arena.time_utils import utcnow_naive


def _safe_json(raw_value, fallback=None):
    if fallback is None:
        fallback = {}
    if not raw_value:
        return fallback
    try:
        return json.loads(raw_value)
    except (TypeError, ValueError):
        return fallback


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    name = db.Column(db.String(120), default='')
    photo_url = db.Column(db.String(500), default='')
    bio = db.Column(db.Text, default='')
    # Arena profile
    tier = db.Column(db.String(20), default='bronze')
    ranking_points = db.Column(db.Integer, default=1000)
    wins = db.Column(db.Integer, default=0)
    losses = db.Column(db.Integer, default=0)
    elo_rating = db.Column(db.Float, default=1200.0)
    availability_status = db.Column(db.String(20), default='offline')
    # online, available, away, in-match, offline
    match_intent = db.Column(db.String(20), default='singles')
    # singles, doubles-looking, doubles-team
    partner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    partner = db.relationship('User', remote_side=[id], foreign_keys=[partner_id])

    @property
    def display_name(self):
        return self.name or self.username

    @property
    def games_played(self):
        return (self.wins or 0) + (self.losses or 0)

    def to_dict(self):
        return {
            'id': self.id, 'username': self.username, 'email': self.email,
            'name': self.name, 'photo_url': self.photo_url, 'bio': self.bio,
            'tier': self.tier, 'ranking_points': self.ranking_points,
            'wins': self.wins, 'losses': self.losses,
            'games_played': self.games_played, 'elo_rating': self.elo_rating,
            'availability_status': self.availability_status,
            'match_intent': self.match_intent,
            'partner_id': self.partner_id,
            'latitude': self.latitude, 'longitude': self.longitude,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


# ── Notifications ─────────────────────────────────────────────────────

class Notification(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    notif_type = db.Column(db.String(50), nullable=False)
    content = db.Column(db.Text, nullable=False)
    reference_id = db.Column(db.Integer, nullable=True)
    read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    user = db.relationship('User', backref='notifications')

    def to_dict(self):
        return {
            'id': self.id, 'notif_type': self.notif_type,
            'content': self.content, 'reference_id': self.reference_id,
            'read': self.read,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


# ── Arena ─────────────────────────────────────────────────────────────

class ArenaAuditLog(db.Model):
    """Delivered negotiation transition, kept for audit and history."""
    id = db.Column(db.Integer, primary_key=True)
    negotiation_id = db.Column(db.Integer, nullable=False)
    kind = db.Column(db.String(30), nullable=False)  # challenge, partner_request
    from_state = db.Column(db.String(20), nullable=True)
    to_state = db.Column(db.String(20), nullable=False)
    reason = db.Column(db.String(40), nullable=True)
    actor_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    payload_json = db.Column(db.Text, default='{}')
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())

    __table_args__ = (
        db.Index('ix_arena_audit_log_negotiation', 'negotiation_id', 'created_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'negotiation_id': self.negotiation_id,
            'kind': self.kind,
            'from_state': self.from_state,
            'to_state': self.to_state,
            'reason': self.reason,
            'actor_id': self.actor_id,
            'payload': _safe_json(self.payload_json, {}),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Match(db.Model):
    """A match started from a confirmed arena challenge."""
    id = db.Column(db.Integer, primary_key=True)
    challenge_id = db.Column(db.Integer, nullable=True)
    match_type = db.Column(db.String(20), nullable=False)  # singles, doubles-team
    status = db.Column(db.String(20), default='in_progress')
    # in_progress, completed, cancelled
    team1_score = db.Column(db.Integer, nullable=True)
    team2_score = db.Column(db.Integer, nullable=True)
    winner_team = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    completed_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.Index('ix_match_challenge', 'challenge_id'),
    )

    players = db.relationship('MatchPlayer', backref='match', lazy='joined',
                              cascade='all, delete-orphan')

    def to_dict(self):
        players_list = [mp.to_dict() for mp in self.players]
        return {
            'id': self.id, 'challenge_id': self.challenge_id,
            'match_type': self.match_type, 'status': self.status,
            'team1_score': self.team1_score, 'team2_score': self.team2_score,
            'winner_team': self.winner_team,
            'total_players': len(players_list),
            'players': players_list,
            'team1': [p for p in players_list if p['team'] == 1],
            'team2': [p for p in players_list if p['team'] == 2],
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }


class MatchPlayer(db.Model):
    """Links a player to a match with team assignment and rating snapshot."""
    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('match.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    team = db.Column(db.Integer, nullable=False)
    elo_before = db.Column(db.Float, nullable=True)
    ranking_points_before = db.Column(db.Integer, nullable=True)

    __table_args__ = (
        db.UniqueConstraint('match_id', 'user_id', name='uq_match_player_unique'),
    )

    user = db.relationship('User', backref='match_participations')

    def to_dict(self):
        return {
            'id': self.id, 'match_id': self.match_id,
            'user_id': self.user_id, 'team': self.team,
            'elo_before': self.elo_before,
            'ranking_points_before': self.ranking_points_before,
            'user': {
                'id': self.user.id,
                'name': self.user.display_name,
                'tier': self.user.tier,
            } if self.user else None,
        }
