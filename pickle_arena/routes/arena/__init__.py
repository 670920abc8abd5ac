"""Arena matchmaking blueprint."""
from flask import Blueprint

arena_bp = Blueprint('arena', __name__)

# Route modules register their routes by importing arena_bp.
# These imports MUST come after arena_bp is defined.
from pickle_arena.routes.arena import discovery, challenges, partners  # noqa: E402, F401
