"""SQLAlchemy-backed collaborators used by the duel engine.

Each store works on ``db.session`` and therefore needs an application
context. Callers decide how to react to failures; the stores never swallow
database errors themselves.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from quiz_arena import db
from quiz_arena.models import User, QuizQuestion, GameSession, GameParticipant, EloHistory


class QuestionBank:
    def list_topics(self) -> List[str]:
        rows = db.session.query(QuizQuestion.topic).distinct().order_by(QuizQuestion.topic).all()
        return [r[0] for r in rows]

    def sample_questions(self, topic: str, count: int) -> List[dict]:
        """Random questions for ``topic``, no repeats within one call."""
        questions = (
            QuizQuestion.query.filter_by(topic=topic)
            .order_by(db.func.random())
            .limit(count)
            .all()
        )
        return [q.to_dict(include_answer=True) for q in questions]


class SessionStore:
    def create_session(self, topic: str) -> int:
        """Insert an in-progress session.

        The row is only flushed; ``add_participants`` commits it together
        with the participant rows.
        """
        session = GameSession(topic=topic, status='in_progress')
        db.session.add(session)
        db.session.flush()
        return session.id

    def add_participants(self, session_id: int, user_ids: Iterable[int]) -> None:
        for user_id in user_ids:
            db.session.add(GameParticipant(game_session_id=session_id, user_id=user_id, score=0))
        db.session.commit()

    def increment_score(self, session_id: int, user_id: int, delta: int) -> None:
        GameParticipant.query.filter_by(game_session_id=session_id, user_id=user_id).update(
            {GameParticipant.score: GameParticipant.score + delta},
            synchronize_session=False,
        )
        db.session.commit()

    def complete_session(self, session_id: int, winner_id: Optional[int], reason: Optional[str] = None) -> None:
        session = db.session.get(GameSession, session_id)
        if session is None:
            return
        session.status = 'completed'
        session.winner_user_id = winner_id
        session.end_reason = reason
        session.completed_at = datetime.now(timezone.utc)
        db.session.add(session)
        db.session.commit()


class RatingStore:
    def get_ratings(self, user_ids: Iterable[int]) -> Dict[int, int]:
        users = User.query.filter(User.id.in_(list(user_ids))).all()
        return {u.id: u.rating for u in users}

    def set_rating(self, user_id: int, value: int, commit: bool = True, session_id: Optional[int] = None) -> None:
        """Store a new rating and append it to the user's rating history."""
        User.query.filter_by(id=user_id).update({User.rating: value}, synchronize_session=False)
        db.session.add(EloHistory(user_id=user_id, game_session_id=session_id, rating=value))
        if commit:
            db.session.commit()

    def history(self, user_id: int, limit: int = 50) -> List[dict]:
        """Most recent rating changes first."""
        rows = (
            EloHistory.query.filter_by(user_id=user_id)
            .order_by(EloHistory.recorded_at.desc(), EloHistory.id.desc())
            .limit(limit)
            .all()
        )
        return [r.to_dict() for r in rows]

    def commit(self) -> None:
        db.session.commit()
