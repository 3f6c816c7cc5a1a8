import math
from typing import Dict, Optional, Tuple

K_FACTOR = 32

WIN = 1.0
DRAW = 0.5
LOSS = 0.0


def expected_score(rating: float, opponent_rating: float) -> float:
    """Probability that a player rated ``rating`` beats ``opponent_rating``."""
    return 1.0 / (1.0 + 10 ** ((opponent_rating - rating) / 400.0))


def compute_ratings(rating_a: int, rating_b: int, outcome_for_a: float, k_factor: int = K_FACTOR) -> Tuple[int, int]:
    """Return the new (rating_a, rating_b) after a match.

    ``outcome_for_a`` is 1 for a win by A, 0.5 for a draw and 0 for a loss.
    Results are rounded to the nearest integer.
    """
    if outcome_for_a not in (WIN, DRAW, LOSS):
        raise ValueError(f'outcome must be 1, 0.5 or 0, got {outcome_for_a!r}')
    expected_a = expected_score(rating_a, rating_b)
    expected_b = expected_score(rating_b, rating_a)
    new_a = rating_a + k_factor * (outcome_for_a - expected_a)
    new_b = rating_b + k_factor * ((1 - outcome_for_a) - expected_b)
    return _round_half_up(new_a), _round_half_up(new_b)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def outcome_for(player_id: int, winner_id: Optional[int]) -> float:
    if winner_id is None:
        return DRAW
    return WIN if winner_id == player_id else LOSS


def apply_match_result(store, player_a: int, player_b: int, winner_id: Optional[int],
                       k_factor: int = K_FACTOR, session_id: Optional[int] = None) -> Dict[int, int]:
    """Read both ratings, compute the update and write both in one commit.

    Each write also records a history row tagged with ``session_id``.
    Returns ``{user_id: new_rating}``, or an empty dict when either player is
    missing from the rating store.
    """
    ratings = store.get_ratings([player_a, player_b])
    if player_a not in ratings or player_b not in ratings:
        return {}
    new_a, new_b = compute_ratings(ratings[player_a], ratings[player_b], outcome_for(player_a, winner_id), k_factor)
    store.set_rating(player_a, new_a, commit=False, session_id=session_id)
    store.set_rating(player_b, new_b, commit=False, session_id=session_id)
    store.commit()
    return {player_a: new_a, player_b: new_b}
