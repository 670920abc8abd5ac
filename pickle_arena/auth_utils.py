from datetime import datetime, timedelta, timezone
from functools import wraps
from flask import request, jsonify, current_app
import jwt
from pickle_arena.app import db
from pickle_arena.models import User

TOKEN_ALGORITHM = 'HS256'


def generate_token(player_id):
    """Signed bearer token naming the player it was issued to."""
    issued_at = datetime.now(timezone.utc)
    payload = {
        'user_id': player_id,
        'iat': issued_at,
        'exp': issued_at + timedelta(hours=current_app.config.get('JWT_EXPIRATION_HOURS', 24)),
    }
    return jwt.encode(payload, current_app.config['SECRET_KEY'], algorithm=TOKEN_ALGORITHM)


def player_for_header(auth_header):
    """Returns ``(user, error)`` for an ``Authorization`` header value."""
    scheme, _, token = str(auth_header or '').strip().partition(' ')
    if not scheme:
        return None, 'Authentication required'
    if scheme != 'Bearer' or not token.strip():
        return None, 'Bearer token required'
    try:
        claims = jwt.decode(
            token.strip(), current_app.config['SECRET_KEY'], algorithms=[TOKEN_ALGORITHM]
        )
    except jwt.ExpiredSignatureError:
        return None, 'Token expired'
    except jwt.InvalidTokenError:
        return None, 'Invalid token'
    player_id = claims.get('user_id')
    user = db.session.get(User, player_id) if player_id is not None else None
    if user is None:
        return None, 'Unknown player'
    return user, None


def login_required(view):
    @wraps(view)
    def decorated(*args, **kwargs):
        user, error = player_for_header(request.headers.get('Authorization'))
        if error:
            return jsonify({'error': error}), 401
        request.current_user = user
        return view(*args, **kwargs)
    return decorated
