"""Matchmaking and duel orchestration.

The ``Arena`` is the registry for everything a running server knows about
duels: the per-topic waiting queues, the runtime state of every live session
and which connection plays in which session. The Socket.IO handlers own one
instance (stored on ``app.extensions['arena']``) and forward client events to
it.

All in-memory decisions are taken under one re-entrant lock. Database writes
happen after the lock is released and never hold up the game: a failed write
is rolled back and logged.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Optional, Set, Tuple

from flask import has_app_context

from quiz_arena import db
from quiz_arena.errors import ArenaError, AlreadyQueuedError, SessionNotFoundError
from quiz_arena.services.matchmaking import QueueManager, WaitingEntry
from quiz_arena.services.rating import apply_match_result
from quiz_arena.services.session import (
    AWAITING_READY,
    COMPLETED,
    IN_PROGRESS,
    ANSWER_FIELD,
    PlayerState,
    SessionRuntime,
    public_question,
)
from quiz_arena.services.stores import QuestionBank, RatingStore, SessionStore


class Arena:
    def __init__(self, app, transport, scheduler, question_bank=None, session_store=None, rating_store=None):
        self.app = app
        self.transport = transport
        self.scheduler = scheduler
        self.question_bank = question_bank or QuestionBank()
        self.session_store = session_store or SessionStore()
        self.rating_store = rating_store or RatingStore()

        cfg = app.config
        self.answer_duration = int(cfg.get('ANSWER_DURATION_SEC', 10))
        self.reveal_duration = int(cfg.get('REVEAL_DURATION_SEC', 3))
        self.ready_timeout = int(cfg.get('READY_TIMEOUT_SEC', 0))
        self.questions_per_game = int(cfg.get('QUESTIONS_PER_GAME', 10))
        self.points_per_answer = int(cfg.get('POINTS_PER_CORRECT_ANSWER', 10))
        self.k_factor = int(cfg.get('ELO_K_FACTOR', 32))

        self.queues = QueueManager()
        self.sessions: Dict[int, SessionRuntime] = {}
        # connection -> (session_id, user_id)
        self.connections: Dict[str, Tuple[int, int]] = {}
        # connection -> user_id while its session row is being written
        self.pending: Dict[str, int] = {}
        self._departed: Set[str] = set()
        self._lock = threading.RLock()

    @property
    def logger(self):
        return self.app.logger

    # ---- Startup ----

    def load_topics(self):
        """Seed one matchmaking queue per topic in the question bank."""
        topics = self.question_bank.list_topics()
        with self._lock:
            self.queues.seed(topics)
        self.logger.info(f"[queues-ready] topics={topics}")
        return topics

    # ---- Matchmaking ----

    def request_match(self, topic: str, user_id: int, username: str, connection: str) -> Optional[int]:
        """Pair the requester with the oldest waiter for ``topic`` or queue them.

        Returns the new session id, or None when the requester was queued or
        the pairing was dropped because a player left while it was stored.
        """
        entry = WaitingEntry(user_id, username, connection)
        with self._lock:
            if (connection in self.connections or connection in self.pending
                    or self._user_in_session(user_id) or user_id in self.pending.values()):
                raise AlreadyQueuedError('You are already in a match.')
            if self.queues.find(connection=connection, user_id=user_id) is not None:
                raise AlreadyQueuedError('You are already waiting for a match.')
            opponent = self.queues.request(topic, entry)
            if opponent is not None:
                # Both sides stay reachable for disconnects until the session is registered
                self.pending[connection] = user_id
                self.pending[opponent.connection] = opponent.user_id

        if opponent is None:
            self.logger.info(f"[match-wait] topic={topic} user={user_id}")
            self.transport.send('waiting_for_match', {'topic': topic}, connection)
            return None

        try:
            session_id = self.session_store.create_session(topic)
            self.session_store.add_participants(session_id, [user_id, opponent.user_id])
        except Exception as exc:
            db.session.rollback()
            self.logger.exception(f"[match-failed] topic={topic} users={user_id},{opponent.user_id}")
            with self._lock:
                gone = self._release_pending(connection, opponent.connection)
                if opponent.connection not in gone:
                    self.queues.requeue_front(topic, opponent)
            raise ArenaError('Could not create a game session, please try again.') from exc

        channel = f"game-{session_id}"
        runtime = SessionRuntime(session_id, topic, channel, [
            PlayerState(user_id, username, connection),
            PlayerState(opponent.user_id, opponent.username, opponent.connection),
        ])
        with self._lock:
            gone = self._release_pending(connection, opponent.connection)
            if not gone:
                self.sessions[session_id] = runtime
                for p in runtime.players.values():
                    self.connections[p.connection] = (session_id, p.user_id)
                    self.transport.join(p.connection, channel)
                if self.ready_timeout > 0:
                    runtime.arm(self.scheduler.call_later(
                        self.ready_timeout, self._on_ready_timeout, session_id,
                        label=f"ready:{session_id}",
                    ))

        if gone:
            self._abandon_pairing(session_id, topic, [entry, opponent], gone)
            return None

        self.logger.info(f"[match-found] session={session_id} topic={topic} users={user_id},{opponent.user_id}")
        self.transport.emit('match_found', {
            'sessionId': session_id,
            'channel': channel,
            'players': [entry.to_dict(), opponent.to_dict()],
        }, channel)
        return session_id

    def _abandon_pairing(self, session_id, topic, entries, gone) -> None:
        """Close a session whose player left before it started; requeue whoever is still here."""
        self.logger.info(f"[match-abandoned] session={session_id} topic={topic} left={sorted(gone)}")
        self._persist('complete', self.session_store.complete_session, session_id, None, 'abandoned')
        for entry in entries:
            if entry.connection in gone:
                continue
            with self._lock:
                self.queues.requeue_front(topic, entry)
            self.transport.send('waiting_for_match', {'topic': topic}, entry.connection)

    def _release_pending(self, *connections) -> set:
        """Forget pending pairings; return the connections that left meanwhile."""
        gone = set()
        for conn in connections:
            self.pending.pop(conn, None)
            if conn in self._departed:
                self._departed.discard(conn)
                gone.add(conn)
        return gone

    def cancel_waiting(self, connection: str) -> Optional[WaitingEntry]:
        with self._lock:
            entry = self.queues.cancel(connection)
        if entry is not None:
            self.logger.info(f"[match-cancel] user={entry.user_id}")
        return entry

    # ---- Session lifecycle ----

    def player_ready(self, session_id: int, user_id: int) -> bool:
        with self._lock:
            runtime = self._get(session_id)
            if runtime.player(user_id) is None:
                self.logger.info(f"[ready-ignored] session={session_id} user={user_id} not a participant")
                return False
            should_start = runtime.mark_ready(user_id)
            if should_start:
                runtime.cancel_timer()
        self.logger.info(f"[ready] session={session_id} user={user_id} start={should_start}")
        if should_start:
            self.start(session_id)
        return should_start

    def start(self, session_id: int) -> None:
        with self._lock:
            runtime = self._get(session_id)
            topic = runtime.topic
        try:
            questions = self.question_bank.sample_questions(topic, self.questions_per_game)
        except Exception:
            db.session.rollback()
            self.logger.exception(f"[start-failed] session={session_id} topic={topic}")
            questions = []

        with self._lock:
            if self.sessions.get(session_id) is not runtime:
                return
            if questions:
                runtime.load_questions(questions)
        if not questions:
            self.end(session_id, None, 'no_questions', rated=False)
            return
        self.logger.info(f"[start] session={session_id} topic={topic} questions={len(questions)}")
        self.advance(session_id)

    def advance(self, session_id: int) -> None:
        """Broadcast the current question and arm its answer timer, or end."""
        with self._lock:
            runtime = self.sessions.get(session_id)
            if runtime is None:
                return
            if not runtime.finished:
                runtime.begin_question()
                index = runtime.current_index
                self.transport.emit('new_question', {
                    'question': public_question(runtime.current_question),
                    'questionNumber': index + 1,
                    'totalQuestions': len(runtime.questions),
                    'timeLimit': self.answer_duration,
                }, runtime.channel)
                runtime.arm(self.scheduler.call_later(
                    self.answer_duration, self._on_answer_timeout, session_id, index,
                    label=f"answer:{session_id}:{index}",
                ))
                return
        self.end(session_id, None, 'completed')

    def _on_answer_timeout(self, session_id: int, index: int) -> None:
        with self._app_context(), self._lock:
            runtime = self._live(session_id, index)
            if runtime is None:
                return
            self.transport.emit('times_up', {
                'correctAnswer': runtime.current_question.get(ANSWER_FIELD),
                'questionNumber': index + 1,
            }, runtime.channel)
            runtime.arm(self.scheduler.call_later(
                self.reveal_duration, self._on_reveal_done, session_id, index,
                label=f"reveal:{session_id}:{index}",
            ))

    def _on_reveal_done(self, session_id: int, index: int) -> None:
        with self._app_context():
            with self._lock:
                runtime = self._live(session_id, index)
                if runtime is None:
                    return
                runtime.timer = None
                runtime.next_question()
            self.advance(session_id)

    def _on_ready_timeout(self, session_id: int) -> None:
        with self._app_context():
            with self._lock:
                runtime = self.sessions.get(session_id)
                if runtime is None or runtime.status != AWAITING_READY:
                    return
                runtime.timer = None
            self.logger.info(f"[ready-timeout] session={session_id}")
            self.end(session_id, None, 'ready_timeout', rated=False)

    def submit_answer(self, session_id: int, user_id: int, answer) -> Optional[bool]:
        """Score an answer; None if it was ignored as duplicate or stale."""
        with self._lock:
            runtime = self._get(session_id)
            correct = runtime.record_answer(user_id, answer, self.points_per_answer)
            if correct is None:
                self.logger.info(f"[answer-ignored] session={session_id} user={user_id}")
                return None
            payload = {'players': runtime.players_payload()}
            channel = runtime.channel
        if correct:
            self._persist('score', self.session_store.increment_score, session_id, user_id, self.points_per_answer)
        self.transport.emit('score_update', payload, channel)
        return correct

    def forfeit(self, session_id: int, leaving_user_id: int, reason: str = 'forfeit') -> Optional[dict]:
        with self._lock:
            runtime = self._get(session_id)
            opponent = runtime.opponent_of(leaving_user_id)
        if opponent is None:
            self.logger.info(f"[forfeit-ignored] session={session_id} user={leaving_user_id} not a participant")
            return None
        return self.end(session_id, opponent.user_id, reason)

    def handle_disconnect(self, connection: str) -> Optional[dict]:
        self.cancel_waiting(connection)
        with self._lock:
            if connection in self.pending:
                self._departed.add(connection)
                self.logger.info(f"[disconnect-pending] connection={connection}")
                return None
            binding = self.connections.get(connection)
        if binding is None:
            return None
        session_id, user_id = binding
        try:
            return self.forfeit(session_id, user_id, reason='disconnect')
        except SessionNotFoundError:
            return None

    def end(self, session_id: int, winner_id: Optional[int] = None, reason: str = 'completed',
            rated: bool = True) -> Optional[dict]:
        """Finish a session exactly once: persist, rate, broadcast, forget."""
        with self._lock:
            runtime = self.sessions.pop(session_id, None)
            if runtime is None:
                return None
            runtime.cancel_timer()
            runtime.status = COMPLETED
            for conn in runtime.connections:
                if self.connections.get(conn, (None,))[0] == session_id:
                    del self.connections[conn]
            if winner_id is None and reason == 'completed':
                winner_id = runtime.leader()
            scores = runtime.scores()
            player_a, player_b = runtime.user_ids

        self._persist('complete', self.session_store.complete_session, session_id, winner_id, reason)
        ratings = {}
        if rated:
            ratings = self._persist(
                'ratings', apply_match_result, self.rating_store, player_a, player_b, winner_id, self.k_factor, session_id
            ) or {}

        payload = {
            'sessionId': session_id,
            'scores': scores,
            'winnerId': winner_id,
            'reason': reason,
            'ratings': {str(uid): value for uid, value in ratings.items()},
        }
        self.transport.emit('game_over', payload, runtime.channel)
        for conn in runtime.connections:
            self.transport.leave(conn, runtime.channel)
        self.logger.info(f"[game-over] session={session_id} reason={reason} winner={winner_id} scores={scores}")
        return payload

    # ---- Lookups ----

    def session(self, session_id: int) -> Optional[SessionRuntime]:
        with self._lock:
            return self.sessions.get(session_id)

    def binding(self, connection: str) -> Optional[Tuple[int, int]]:
        """``(session_id, user_id)`` the connection plays in, if any."""
        with self._lock:
            return self.connections.get(connection)

    def _get(self, session_id) -> SessionRuntime:
        runtime = self.sessions.get(session_id)
        if runtime is None:
            raise SessionNotFoundError(session_id)
        return runtime

    def _live(self, session_id, index) -> Optional[SessionRuntime]:
        runtime = self.sessions.get(session_id)
        if runtime is None or runtime.status != IN_PROGRESS or runtime.current_index != index:
            self.logger.info(f"[timer-abort] session={session_id} expected_index={index}")
            return None
        return runtime

    def _user_in_session(self, user_id) -> bool:
        return any(uid == user_id for _, uid in self.connections.values())

    def _persist(self, what, fn, *args):
        try:
            return fn(*args)
        except Exception:
            db.session.rollback()
            self.logger.exception(f"[persist-failed] what={what} args={args}")
            return None

    @contextmanager
    def _app_context(self):
        if has_app_context():
            yield
            return
        with self.app.app_context():
            yield
