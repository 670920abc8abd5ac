"""Tests for arena discovery, challenge and partner routes."""
import json

from pickle_arena.app import db
from pickle_arena.models import ArenaAuditLog, Match, Notification, User
from pickle_arena.routes.arena.helpers import init_arena


def _register(client, username, email, **profile):
    payload = {
        'username': username,
        'email': email,
        'password': 'password123',
    }
    payload.update(profile)
    res = client.post('/api/auth/register', json=payload)
    assert res.status_code == 201, res.data
    data = json.loads(res.data)
    return data['token'], data['user']['id']


def _auth(token):
    return {'Authorization': f'Bearer {token}'}


def _db_user(user_id):
    return db.session.get(User, user_id)


def _players(client, count=2):
    """Register ``count`` players standing around the same park in San Francisco."""
    names = ['alice', 'bob', 'carol', 'dan']
    created = []
    for i in range(count):
        created.append(_register(
            client, names[i], f'{names[i]}@test.com',
            name=names[i].title(), latitude=37.7700 + 0.001 * i, longitude=-122.4400,
        ))
    return created


def _challenge(client, token, challenged_id, **extra):
    payload = {'challenged_id': challenged_id}
    payload.update(extra)
    return client.post('/api/arena/challenges', json=payload, headers=_auth(token))


def _confirm_challenge(client, challenger_token, challenged_token, challenge_id):
    res = client.post(f'/api/arena/challenges/{challenge_id}/accept', headers=_auth(challenged_token))
    assert res.status_code == 200
    for token in (challenger_token, challenged_token):
        res = client.post(
            f'/api/arena/challenges/{challenge_id}/ready',
            json={'ready': True}, headers=_auth(token),
        )
        assert res.status_code == 200
    return json.loads(res.data)


def _partner_up(client, requester_token, target_token, target_id):
    res = client.post('/api/arena/partners/requests', json={
        'target_id': target_id,
    }, headers=_auth(requester_token))
    assert res.status_code == 201
    request_id = json.loads(res.data)['request']['id']
    res = client.post(f'/api/arena/partners/requests/{request_id}/accept', headers=_auth(target_token))
    assert res.status_code == 200
    for token in (requester_token, target_token):
        res = client.post(
            f'/api/arena/partners/requests/{request_id}/ready',
            json={'ready': True}, headers=_auth(token),
        )
        assert res.status_code == 200
    return json.loads(res.data)


# ── Discovery ─────────────────────────────────────────────────────────

def test_lobby_requires_auth(client):
    res = client.get('/api/arena/players')
    assert res.status_code == 401


def test_proximity_lobby_respects_radius(client):
    token, _ = _register(client, 'viewer', 'viewer@test.com', latitude=37.7700, longitude=-122.4400)
    _, near_id = _register(client, 'near', 'near@test.com', latitude=37.7745, longitude=-122.4400)
    _, far_id = _register(client, 'far', 'far@test.com', latitude=37.8015, longitude=-122.4400)
    _register(client, 'nowhere', 'nowhere@test.com')

    res = client.get('/api/arena/players?radius_km=2', headers=_auth(token))
    assert res.status_code == 200
    data = json.loads(res.data)
    assert data['mode'] == 'proximity'
    assert data['radius_km'] == 2.0
    assert [p['id'] for p in data['players']] == [near_id]
    assert data['players'][0]['distance_km'] < 1.0
    assert data['players'][0]['compatibility'] == 100
    assert data['players'][0]['compatibility_band'] == 'high'
    assert data['counts']['total'] == 3

    res = client.get('/api/arena/players?mode=global', headers=_auth(token))
    data = json.loads(res.data)
    assert data['radius_km'] is None
    assert [p['id'] for p in data['players']][:2] == [near_id, far_id]
    assert len(data['players']) == 3


def test_lobby_search_and_match_filter(client):
    (token, _), (_, bob_id), (_, carol_id) = _players(client, 3)
    client.put('/api/auth/profile', json={'match_intent': 'doubles-looking'},
               headers=_auth(_register(client, 'zed', 'zed@test.com')[0]))

    res = client.get('/api/arena/players?mode=global&q=car', headers=_auth(token))
    assert [p['id'] for p in json.loads(res.data)['players']] == [carol_id]

    res = client.get('/api/arena/players?mode=global&match_filter=doubles', headers=_auth(token))
    names = [p['name'] for p in json.loads(res.data)['players']]
    assert names == ['zed']

    res = client.get('/api/arena/players?mode=global&match_filter=singles', headers=_auth(token))
    assert bob_id in [p['id'] for p in json.loads(res.data)['players']]


def test_lobby_rejects_unknown_mode(client):
    (token, _), _ = _players(client)
    res = client.get('/api/arena/players?mode=nearby', headers=_auth(token))
    assert res.status_code == 400
    assert json.loads(res.data)['error_kind'] == 'ValidationError'


def test_partner_suggestions_only_list_doubles_seekers(client):
    (token, _), (bob_token, bob_id), (carol_token, _) = _players(client, 3)
    client.put('/api/auth/profile', json={'match_intent': 'doubles-looking'}, headers=_auth(bob_token))
    client.put('/api/auth/profile', json={
        'match_intent': 'doubles-looking', 'availability_status': 'away',
    }, headers=_auth(carol_token))

    res = client.get('/api/arena/partners/suggestions', headers=_auth(token))
    assert res.status_code == 200
    suggestions = json.loads(res.data)['suggestions']
    assert [s['id'] for s in suggestions] == [bob_id]


# ── Challenges ────────────────────────────────────────────────────────

def test_challenge_flow_confirms_and_starts_match(client):
    (alice_token, alice_id), (bob_token, bob_id) = _players(client)

    res = _challenge(client, alice_token, bob_id, message='Rally?', created_via='swipe')
    assert res.status_code == 201
    challenge = json.loads(res.data)['challenge']
    assert challenge['status'] == 'pending'
    assert challenge['created_via'] == 'swipe'
    assert challenge['my_side'] == 'challenger'
    challenge_id = challenge['id']

    incoming = json.loads(client.get('/api/arena/challenges', headers=_auth(bob_token)).data)
    assert [c['id'] for c in incoming['incoming']] == [challenge_id]
    assert incoming['outgoing'] == []

    invite = Notification.query.filter_by(user_id=bob_id, notif_type='arena_challenge_invite').first()
    assert invite is not None
    assert invite.reference_id == challenge_id

    res = client.post(f'/api/arena/challenges/{challenge_id}/accept', headers=_auth(bob_token))
    assert json.loads(res.data)['challenge']['status'] == 'ready-check'

    res = client.post(f'/api/arena/challenges/{challenge_id}/ready',
                      json={'ready': True}, headers=_auth(alice_token))
    data = json.loads(res.data)
    assert data['confirmed'] is False
    assert data['challenge']['ready_status'] == {'challenger_ready': True, 'challenged_ready': False}

    res = client.post(f'/api/arena/challenges/{challenge_id}/ready',
                      json={'ready': True}, headers=_auth(bob_token))
    data = json.loads(res.data)
    assert data['confirmed'] is True
    assert data['challenge']['status'] == 'confirmed'
    assert Notification.query.filter_by(notif_type='arena_match_ready').count() == 2

    res = client.post(f'/api/arena/challenges/{challenge_id}/start', headers=_auth(alice_token))
    assert res.status_code == 200
    data = json.loads(res.data)
    assert data['challenge']['status'] == 'started'
    assert data['match']['challenge_id'] == challenge_id
    assert [p['user_id'] for p in data['match']['team1']] == [alice_id]
    assert [p['user_id'] for p in data['match']['team2']] == [bob_id]
    assert Match.query.count() == 1
    assert _db_user(bob_id).availability_status == 'in-match'

    res = client.post(f'/api/arena/challenges/{challenge_id}/start', headers=_auth(alice_token))
    assert res.status_code == 404

    states = [row.to_state for row in ArenaAuditLog.query.order_by(ArenaAuditLog.id).all()]
    assert states == ['pending', 'ready-check', 'ready-check', 'confirmed', 'started']


def test_only_challenged_player_can_accept(client):
    (alice_token, _), (_, bob_id), (carol_token, _) = _players(client, 3)
    challenge_id = json.loads(_challenge(client, alice_token, bob_id).data)['challenge']['id']

    res = client.post(f'/api/arena/challenges/{challenge_id}/accept', headers=_auth(alice_token))
    assert res.status_code == 403
    res = client.post(f'/api/arena/challenges/{challenge_id}/accept', headers=_auth(carol_token))
    assert res.status_code == 403
    res = client.get(f'/api/arena/challenges/{challenge_id}', headers=_auth(carol_token))
    assert res.status_code == 403


def test_decline_then_decline_again_is_conflict(client):
    (alice_token, _), (bob_token, bob_id) = _players(client)
    challenge_id = json.loads(_challenge(client, alice_token, bob_id).data)['challenge']['id']

    res = client.post(f'/api/arena/challenges/{challenge_id}/decline', headers=_auth(bob_token))
    assert res.status_code == 200
    assert json.loads(res.data)['challenge']['status'] == 'declined'

    res = client.post(f'/api/arena/challenges/{challenge_id}/decline', headers=_auth(bob_token))
    assert res.status_code == 409
    assert json.loads(res.data)['error_kind'] == 'StaleNegotiation'


def test_declining_confirmed_challenge_is_invalid(client):
    (alice_token, _), (bob_token, bob_id) = _players(client)
    challenge_id = json.loads(_challenge(client, alice_token, bob_id).data)['challenge']['id']
    _confirm_challenge(client, alice_token, bob_token, challenge_id)

    res = client.post(f'/api/arena/challenges/{challenge_id}/decline', headers=_auth(alice_token))
    assert res.status_code == 400
    assert json.loads(res.data)['error_kind'] == 'InvalidTransition'


def test_withdrawal_after_accepting_is_audited(client):
    (alice_token, _), (bob_token, bob_id) = _players(client)
    challenge_id = json.loads(_challenge(client, alice_token, bob_id).data)['challenge']['id']
    client.post(f'/api/arena/challenges/{challenge_id}/accept', headers=_auth(bob_token))

    res = client.post(f'/api/arena/challenges/{challenge_id}/decline', headers=_auth(bob_token))
    assert res.status_code == 200
    last = ArenaAuditLog.query.order_by(ArenaAuditLog.id.desc()).first()
    assert last.from_state == 'ready-check'
    assert last.reason == 'withdrawn'


def test_challenge_unavailable_player(client):
    (alice_token, _), (bob_token, bob_id) = _players(client)
    client.put('/api/auth/profile', json={'availability_status': 'away'}, headers=_auth(bob_token))

    res = _challenge(client, alice_token, bob_id)
    assert res.status_code == 409
    assert json.loads(res.data)['error_kind'] == 'CandidateUnavailable'


def test_challenge_validation(client):
    (alice_token, alice_id), (_, bob_id) = _players(client)
    assert _challenge(client, alice_token, 'abc').status_code == 400
    assert _challenge(client, alice_token, bob_id, match_type='doubles-looking').status_code == 400
    assert _challenge(client, alice_token, bob_id, created_via='carrier-pigeon').status_code == 400
    assert _challenge(client, alice_token, 9999).status_code == 404
    res = _challenge(client, alice_token, alice_id)
    assert res.status_code == 400
    assert json.loads(res.data)['error_kind'] == 'InvalidTransition'


def test_ready_requires_boolean(client):
    (alice_token, _), (bob_token, bob_id) = _players(client)
    challenge_id = json.loads(_challenge(client, alice_token, bob_id).data)['challenge']['id']
    client.post(f'/api/arena/challenges/{challenge_id}/accept', headers=_auth(bob_token))
    res = client.post(f'/api/arena/challenges/{challenge_id}/ready',
                      json={'ready': 'yes'}, headers=_auth(alice_token))
    assert res.status_code == 400


def test_unknown_challenge_is_not_found(client):
    (alice_token, _), _ = _players(client)
    res = client.post('/api/arena/challenges/4242/accept', headers=_auth(alice_token))
    assert res.status_code == 404


# ── Partners ──────────────────────────────────────────────────────────

def test_partner_request_flow_forms_partnership(client):
    (alice_token, alice_id), (bob_token, bob_id) = _players(client)
    data = _partner_up(client, alice_token, bob_token, bob_id)
    assert data['accepted'] is True
    assert data['request']['status'] == 'accepted'
    assert data['partnership']['partner']['id'] == alice_id

    res = client.get('/api/arena/partners', headers=_auth(alice_token))
    data = json.loads(res.data)
    assert data['match_intent'] == 'doubles-team'
    assert data['partnership']['partner']['id'] == bob_id

    alice = json.loads(client.get('/api/auth/profile', headers=_auth(alice_token)).data)['user']
    assert alice['partner_id'] == bob_id
    assert alice['match_intent'] == 'doubles-team'
    assert Notification.query.filter_by(notif_type='arena_partnership_formed').count() == 2


def test_team_challenge_needs_partner(client):
    (alice_token, _), (bob_token, bob_id), (carol_token, _), (_, dan_id) = _players(client, 4)
    _partner_up(client, alice_token, bob_token, bob_id)

    res = _challenge(client, carol_token, bob_id, match_type='doubles-team')
    assert res.status_code == 409
    assert json.loads(res.data)['error_kind'] == 'PartnerRequired'

    res = _challenge(client, alice_token, dan_id, match_type='doubles-team')
    assert res.status_code == 201
    challenge = json.loads(res.data)['challenge']
    assert challenge['challenger_partner']['id'] == bob_id
    assert challenge['challenged_partner'] is None


def test_team_challenge_starts_four_player_match(client):
    tokens_ids = _players(client, 4)
    (a_token, a_id), (b_token, b_id), (c_token, c_id), (d_token, d_id) = tokens_ids
    _partner_up(client, a_token, b_token, b_id)
    _partner_up(client, c_token, d_token, d_id)

    res = _challenge(client, a_token, c_id, match_type='doubles-team')
    challenge_id = json.loads(res.data)['challenge']['id']
    _confirm_challenge(client, a_token, c_token, challenge_id)

    res = client.post(f'/api/arena/challenges/{challenge_id}/start', headers=_auth(b_token))
    assert res.status_code == 200
    match = json.loads(res.data)['match']
    assert sorted(p['user_id'] for p in match['team1']) == sorted([a_id, b_id])
    assert sorted(p['user_id'] for p in match['team2']) == sorted([c_id, d_id])


def test_partner_cannot_ready_for_the_team(client):
    (a_token, _), (b_token, b_id), (c_token, c_id), (d_token, d_id) = _players(client, 4)
    _partner_up(client, a_token, b_token, b_id)
    _partner_up(client, c_token, d_token, d_id)
    challenge_id = json.loads(
        _challenge(client, a_token, c_id, match_type='doubles-team').data
    )['challenge']['id']
    client.post(f'/api/arena/challenges/{challenge_id}/accept', headers=_auth(c_token))

    res = client.post(f'/api/arena/challenges/{challenge_id}/ready',
                      json={'ready': True}, headers=_auth(b_token))
    assert res.status_code == 403


def test_dissolve_partnership(client):
    (alice_token, _), (bob_token, bob_id) = _players(client)
    _partner_up(client, alice_token, bob_token, bob_id)

    res = client.delete('/api/arena/partners', headers=_auth(bob_token))
    assert res.status_code == 200

    alice = json.loads(client.get('/api/auth/profile', headers=_auth(alice_token)).data)['user']
    assert alice['partner_id'] is None
    assert alice['match_intent'] == 'doubles-looking'

    res = client.delete('/api/arena/partners', headers=_auth(bob_token))
    assert res.status_code == 404


def test_partner_request_decline(client):
    (alice_token, _), (bob_token, bob_id) = _players(client)
    res = client.post('/api/arena/partners/requests', json={
        'target_id': bob_id, 'message': 'Team up?',
    }, headers=_auth(alice_token))
    request_id = json.loads(res.data)['request']['id']

    incoming = json.loads(client.get('/api/arena/partners', headers=_auth(bob_token)).data)['incoming']
    assert [r['id'] for r in incoming] == [request_id]

    res = client.post(f'/api/arena/partners/requests/{request_id}/decline', headers=_auth(bob_token))
    assert json.loads(res.data)['request']['status'] == 'declined'
    res = client.post(f'/api/arena/partners/requests/{request_id}/accept', headers=_auth(bob_token))
    assert res.status_code == 409


def test_partner_intent_is_locked_while_partnered(client):
    (alice_token, _), (bob_token, bob_id) = _players(client)
    _partner_up(client, alice_token, bob_token, bob_id)

    res = client.put('/api/auth/profile', json={'match_intent': 'singles'}, headers=_auth(alice_token))
    assert res.status_code == 400
    assert 'Dissolve' in json.loads(res.data)['error']
    data = json.loads(client.get('/api/arena/partners', headers=_auth(alice_token)).data)
    assert data['match_intent'] == 'doubles-team'

    client.delete('/api/arena/partners', headers=_auth(alice_token))
    res = client.put('/api/auth/profile', json={'match_intent': 'singles'}, headers=_auth(alice_token))
    assert res.status_code == 200
    assert json.loads(res.data)['user']['match_intent'] == 'singles'


# ── Runtime ───────────────────────────────────────────────────────────

def test_partner_request_id_is_not_a_challenge(client):
    (alice_token, _), (bob_token, bob_id) = _players(client)
    res = client.post('/api/arena/partners/requests', json={'target_id': bob_id}, headers=_auth(alice_token))
    request_id = json.loads(res.data)['request']['id']

    res = client.get(f'/api/arena/challenges/{request_id}', headers=_auth(alice_token))
    assert res.status_code == 404
    assert json.loads(res.data)['error_kind'] == 'NegotiationNotFound'
    res = client.post(f'/api/arena/challenges/{request_id}/accept', headers=_auth(bob_token))
    assert res.status_code == 404

    res = client.get('/api/arena/partners', headers=_auth(bob_token))
    assert [r['status'] for r in json.loads(res.data)['incoming']] == ['pending']


def test_closed_negotiations_are_pruned_after_retention(app, client):
    (alice_token, _), (bob_token, bob_id) = _players(client)
    runtime = app.extensions['arena']
    runtime.retention_minutes = 0
    challenge_id = json.loads(_challenge(client, alice_token, bob_id).data)['challenge']['id']

    res = client.post(f'/api/arena/challenges/{challenge_id}/decline', headers=_auth(bob_token))
    assert res.status_code == 200
    assert len(runtime.engine.store) == 0

    res = client.post(f'/api/arena/challenges/{challenge_id}/decline', headers=_auth(bob_token))
    assert res.status_code == 404


def test_negotiation_ids_continue_after_persisted_history(app, client):
    (alice_token, _), (bob_token, bob_id) = _players(client)
    db.session.add(ArenaAuditLog(negotiation_id=41, kind='challenge', to_state='started'))
    db.session.add(Match(challenge_id=17, match_type='singles'))
    db.session.commit()
    init_arena(app)

    res = _challenge(client, alice_token, bob_id)
    challenge_id = json.loads(res.data)['challenge']['id']
    assert challenge_id == 42

    _confirm_challenge(client, alice_token, bob_token, challenge_id)
    res = client.post(f'/api/arena/challenges/{challenge_id}/start', headers=_auth(alice_token))
    match = json.loads(res.data)['match']
    assert match['challenge_id'] == 42
    assert Match.query.filter_by(challenge_id=42).count() == 1
