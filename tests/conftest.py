import pytest
from pickle_arena.app import create_app, db
from pickle_arena.services.players import Player


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(client):
    """Register a player and return auth headers."""
    res = client.post('/api/auth/register', json={
        'username': 'testuser', 'email': 'test@example.com',
        'password': 'password123', 'name': 'Test User',
    })
    token = res.get_json()['token']
    return {'Authorization': f'Bearer {token}', 'Content-Type': 'application/json'}


@pytest.fixture
def make_player():
    """Build an in-memory arena player with sensible defaults."""
    def _make(player_id, name=None, **overrides):
        values = {
            'id': player_id,
            'name': name or f'Player {player_id}',
            'ranking_points': 1000,
            'wins': 10,
            'losses': 10,
            'status': 'online',
        }
        values.update(overrides)
        return Player(**values)
    return _make
