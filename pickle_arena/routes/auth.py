import logging
import re

from flask import Blueprint, current_app, request, jsonify
from werkzeug.security import generate_password_hash, check_password_hash
from pickle_arena.app import db
from pickle_arena.models import User
from pickle_arena.auth_utils import generate_token, login_required
from pickle_arena.services.players import (
    ARENA_TIERS, MATCH_INTENTS, PARTNER_TIERS, PLAYER_STATUSES, normalize_status,
)

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

_TEXT_FIELDS = {
    'name': 120,
    'bio': 2000,
    'photo_url': 500,
}


def _password_complexity_error(raw_password):
    password = str(raw_password or '')
    if len(password) < 8:
        return 'Password must be at least 8 characters long'
    if not re.search(r'[A-Za-z]', password) or not re.search(r'\d', password):
        return 'Password must include at least one letter and one number'
    return None


def _parse_coordinate(raw_value, limit):
    if raw_value in (None, ''):
        return None, None
    try:
        parsed = float(raw_value)
    except (TypeError, ValueError):
        return None, 'Coordinates must be numbers'
    if parsed < -limit or parsed > limit:
        return None, f'Coordinate out of range (±{limit})'
    return parsed, None


def _apply_arena_profile(user, data):
    """Apply arena profile fields from ``data``; returns an error string or None."""
    for field, max_len in _TEXT_FIELDS.items():
        if field not in data:
            continue
        raw_value = data.get(field)
        setattr(user, field, '' if raw_value is None else str(raw_value).strip()[:max_len])

    if 'availability_status' in data:
        raw_status = str(data.get('availability_status') or '').strip().lower()
        if raw_status != 'busy' and raw_status not in PLAYER_STATUSES:
            return 'Invalid availability status'
        user.availability_status = normalize_status(raw_status)

    if 'match_intent' in data:
        intent = str(data.get('match_intent') or '').strip().lower()
        if intent not in MATCH_INTENTS:
            return 'Invalid match intent'
        if intent == 'doubles-team' and not user.partner_id:
            return 'Form a partnership before switching to doubles-team'
        if user.partner_id and intent != 'doubles-team':
            return 'Dissolve your partnership before changing match intent'
        user.match_intent = intent

    if 'tier' in data:
        tier = str(data.get('tier') or '').strip().lower()
        if tier not in ARENA_TIERS and tier not in PARTNER_TIERS:
            return 'Invalid tier'
        user.tier = tier

    if 'latitude' in data:
        lat, error = _parse_coordinate(data.get('latitude'), 90)
        if error:
            return error
        user.latitude = lat
    if 'longitude' in data:
        lng, error = _parse_coordinate(data.get('longitude'), 180)
        if error:
            return error
        user.longitude = lng
    return None


@auth_bp.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data.get('username') or not data.get('email') or not data.get('password'):
        return jsonify({'error': 'Username, email, and password are required'}), 400

    username = str(data['username']).strip()
    email = str(data['email']).strip().lower()
    password_error = _password_complexity_error(data.get('password'))
    if password_error:
        return jsonify({'error': password_error}), 400

    if User.query.filter_by(username=username).first():
        return jsonify({'error': 'Username already taken'}), 409
    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'Email already registered'}), 409

    user = User(
        username=username,
        email=email,
        password_hash=generate_password_hash(data['password']),
        availability_status='online',
    )
    profile_error = _apply_arena_profile(user, data)
    if profile_error:
        return jsonify({'error': profile_error}), 400

    db.session.add(user)
    db.session.commit()
    logger.info('Registered player %s (%s)', user.id, user.username)
    token = generate_token(user.id)
    return jsonify({'token': token, 'user': user.to_dict()}), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data.get('email') or not data.get('password'):
        return jsonify({'error': 'Email and password are required'}), 400

    email = str(data['email']).strip().lower()
    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, data['password']):
        return jsonify({'error': 'Invalid email or password'}), 401

    token = generate_token(user.id)
    return jsonify({'token': token, 'user': user.to_dict()})


@auth_bp.route('/profile', methods=['GET'])
@login_required
def get_profile():
    return jsonify({'user': request.current_user.to_dict()})


@auth_bp.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Invalid JSON payload'}), 400

    user = request.current_user
    profile_error = _apply_arena_profile(user, data)
    if profile_error:
        db.session.rollback()
        return jsonify({'error': profile_error}), 400

    db.session.commit()
    if 'match_intent' in data:
        runtime = current_app.extensions.get('arena')
        if runtime is not None:
            with runtime.lock:
                runtime.engine.partnerships.clear_intent(user.id)
    return jsonify({'user': user.to_dict()})
