"""In-memory runtime state of a single duel.

``SessionRuntime`` holds everything the question loop needs between events
and exposes the state transitions as plain methods. It knows nothing about
timers, sockets or the database; ``quiz_arena.services.arena`` drives it.
"""

from typing import Dict, List, Optional

AWAITING_READY = 'awaiting_ready'
IN_PROGRESS = 'in_progress'
COMPLETED = 'completed'

ANSWER_FIELD = 'correct_answer'


class PlayerState:
    def __init__(self, user_id: int, username: str, connection: str):
        self.user_id = user_id
        self.username = username
        self.connection = connection
        self.score = 0
        self.has_answered = False
        self.ready = False

    def to_dict(self):
        return {
            'userId': self.user_id,
            'username': self.username,
            'score': self.score,
            'hasAnswered': self.has_answered,
        }


def public_question(question: dict) -> dict:
    """Copy of ``question`` without its answer."""
    return {k: v for k, v in question.items() if k != ANSWER_FIELD}


def normalize_answer(answer) -> str:
    """Letters compare case- and whitespace-insensitively; non-strings never match."""
    return answer.strip().upper() if isinstance(answer, str) else ''


class SessionRuntime:
    def __init__(self, session_id: int, topic: str, channel: str, players: List[PlayerState]):
        if len(players) != 2:
            raise ValueError('a duel needs exactly two players')
        if players[0].user_id == players[1].user_id:
            raise ValueError('a player cannot duel themself')
        self.session_id = session_id
        self.topic = topic
        self.channel = channel
        self.status = AWAITING_READY
        self.players: Dict[int, PlayerState] = {p.user_id: p for p in players}
        self.questions: List[dict] = []
        self.current_index = 0
        self.timer = None

    def player(self, user_id) -> Optional[PlayerState]:
        return self.players.get(user_id)

    def opponent_of(self, user_id) -> Optional[PlayerState]:
        if user_id not in self.players:
            return None
        for uid, p in self.players.items():
            if uid != user_id:
                return p
        return None

    @property
    def user_ids(self) -> List[int]:
        return list(self.players)

    @property
    def connections(self) -> List[str]:
        return [p.connection for p in self.players.values()]

    def mark_ready(self, user_id) -> bool:
        """Record readiness; True exactly once, when the last player is ready."""
        player = self.players.get(user_id)
        if player is None or self.status != AWAITING_READY:
            return False
        player.ready = True
        if all(p.ready for p in self.players.values()):
            self.status = IN_PROGRESS
            return True
        return False

    def load_questions(self, questions: List[dict]) -> None:
        self.questions = list(questions)
        self.current_index = 0
        for p in self.players.values():
            p.score = 0
            p.has_answered = False

    @property
    def finished(self) -> bool:
        return self.current_index >= len(self.questions)

    @property
    def current_question(self) -> Optional[dict]:
        if self.finished:
            return None
        return self.questions[self.current_index]

    def begin_question(self) -> None:
        for p in self.players.values():
            p.has_answered = False

    def record_answer(self, user_id, answer, points: int) -> Optional[bool]:
        """Score a submission for the current question.

        Returns None when the submission is ignored (unknown player, no
        current question, or already answered), otherwise whether it was
        correct.
        """
        player = self.players.get(user_id)
        question = self.current_question
        if player is None or question is None or self.status != IN_PROGRESS or player.has_answered:
            return None
        player.has_answered = True
        expected = normalize_answer(question.get(ANSWER_FIELD))
        correct = bool(expected) and normalize_answer(answer) == expected
        if correct:
            player.score += points
        return correct

    def next_question(self) -> None:
        self.current_index += 1

    def arm(self, handle) -> None:
        self.cancel_timer()
        self.timer = handle

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def scores(self) -> Dict[str, int]:
        return {str(uid): p.score for uid, p in self.players.items()}

    def players_payload(self) -> Dict[str, dict]:
        return {str(uid): p.to_dict() for uid, p in self.players.items()}

    def leader(self) -> Optional[int]:
        """User id with the strictly higher score, or None on a tie."""
        first, second = self.players.values()
        if first.score > second.score:
            return first.user_id
        if second.score > first.score:
            return second.user_id
        return None
