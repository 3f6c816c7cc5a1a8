import pytest

from quiz_arena.services.rating import (
    DRAW,
    LOSS,
    WIN,
    apply_match_result,
    compute_ratings,
    expected_score,
    outcome_for,
)


def test_equal_ratings_expect_even_odds():
    assert expected_score(1500, 1500) == pytest.approx(0.5)
    assert expected_score(1600, 1200) + expected_score(1200, 1600) == pytest.approx(1.0)


def test_win_between_equals_moves_sixteen_points():
    assert compute_ratings(1200, 1200, WIN) == (1216, 1184)
    assert compute_ratings(1750, 1750, LOSS) == (1734, 1766)


def test_draw_between_equals_changes_nothing():
    assert compute_ratings(1200, 1200, DRAW) == (1200, 1200)


def test_upset_win_gains_more_than_expected_win():
    underdog_gain = compute_ratings(1000, 1400, WIN)[0] - 1000
    favourite_gain = compute_ratings(1400, 1000, WIN)[0] - 1400
    assert underdog_gain > favourite_gain
    # 400 points apart: expected ~0.909, so the underdog takes ~29
    assert underdog_gain == 29
    assert favourite_gain == 3


def test_draw_pulls_ratings_together():
    high, low = compute_ratings(1400, 1000, DRAW)
    assert high < 1400
    assert low > 1000


def test_rejects_unknown_outcome():
    with pytest.raises(ValueError):
        compute_ratings(1200, 1200, 0.75)


def test_outcome_for():
    assert outcome_for(1, 1) == WIN
    assert outcome_for(1, 2) == LOSS
    assert outcome_for(1, None) == DRAW


class FakeRatingStore:
    def __init__(self, ratings):
        self.ratings = dict(ratings)
        self.commits = 0
        self.pending = {}
        self.history = []

    def get_ratings(self, user_ids):
        return {uid: self.ratings[uid] for uid in user_ids if uid in self.ratings}

    def set_rating(self, user_id, value, commit=True, session_id=None):
        self.pending[user_id] = value
        self.history.append((user_id, value, session_id))
        if commit:
            self.commit()

    def commit(self):
        self.ratings.update(self.pending)
        self.pending = {}
        self.commits += 1


def test_apply_match_result_writes_both_in_one_commit():
    store = FakeRatingStore({1: 1200, 2: 1200})
    assert apply_match_result(store, 1, 2, winner_id=2) == {1: 1184, 2: 1216}
    assert store.ratings == {1: 1184, 2: 1216}
    assert store.commits == 1


def test_apply_match_result_skips_missing_player():
    store = FakeRatingStore({1: 1200})
    assert apply_match_result(store, 1, 2, winner_id=1) == {}
    assert store.commits == 0


def test_apply_match_result_records_history_for_both_players():
    store = FakeRatingStore({1: 1200, 2: 1200})
    apply_match_result(store, 1, 2, winner_id=None, session_id=9)
    assert store.history == [(1, 1200, 9), (2, 1200, 9)]
    assert store.commits == 1
