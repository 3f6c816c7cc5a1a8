from datetime import datetime, timezone

from flask_login import UserMixin

from quiz_arena import db, bcrypt


def _utcnow():
    return datetime.now(timezone.utc)


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    rating = db.Column(db.Integer, nullable=False, default=1200)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'rating': self.rating,
        }


class QuizQuestion(db.Model):
    __tablename__ = 'quiz_question'
    id = db.Column(db.Integer, primary_key=True)
    topic = db.Column(db.String(128), nullable=False, index=True)
    difficulty = db.Column(db.String(32), nullable=True)
    question_text = db.Column(db.Text, nullable=False)
    option_a = db.Column(db.Text, nullable=False)
    option_b = db.Column(db.Text, nullable=False)
    option_c = db.Column(db.Text, nullable=False)
    option_d = db.Column(db.Text, nullable=False)
    correct_answer = db.Column(db.String(1), nullable=False)  # A, B, C or D

    def to_dict(self, include_answer=False):
        data = {
            'id': self.id,
            'topic': self.topic,
            'difficulty': self.difficulty,
            'question_text': self.question_text,
            'option_a': self.option_a,
            'option_b': self.option_b,
            'option_c': self.option_c,
            'option_d': self.option_d,
        }
        if include_answer:
            data['correct_answer'] = self.correct_answer
        return data


class GameSession(db.Model):
    __tablename__ = 'game_session'
    id = db.Column(db.Integer, primary_key=True)
    topic = db.Column(db.String(128), nullable=False)
    status = db.Column(db.String(32), nullable=False, default='in_progress')  # in_progress, completed
    winner_user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    end_reason = db.Column(db.String(32), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    participants = db.relationship('GameParticipant', back_populates='session')

    def to_dict(self):
        return {
            'id': self.id,
            'topic': self.topic,
            'status': self.status,
            'winner_user_id': self.winner_user_id,
            'end_reason': self.end_reason,
            'participants': [p.to_dict() for p in self.participants],
        }


class GameParticipant(db.Model):
    __tablename__ = 'game_participant'
    __table_args__ = (db.UniqueConstraint('game_session_id', 'user_id', name='uq_participant_session_user'),)
    id = db.Column(db.Integer, primary_key=True)
    game_session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    score = db.Column(db.Integer, nullable=False, default=0)
    session = db.relationship('GameSession', back_populates='participants')

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'score': self.score,
        }


class EloHistory(db.Model):
    """One row per rating change, written in the same commit as the new rating."""
    __tablename__ = 'elo_history'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    game_session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=True)
    rating = db.Column(db.Integer, nullable=False)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            'rating': self.rating,
            'game_session_id': self.game_session_id,
            'recorded_at': self.recorded_at.isoformat() if self.recorded_at else None,
        }
