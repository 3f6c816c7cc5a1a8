from flask import Blueprint, jsonify, request, current_app
from quiz_arena import db
from quiz_arena.models import User

quiz = Blueprint('quiz', __name__)


@quiz.route('/topics', methods=['GET'])
def get_topics():
    """
    Returns the topics a duel can be requested for.
    """
    return jsonify(current_app.extensions['arena'].queues.topics), 200


@quiz.route('/leaderboard', methods=['GET'])
def get_leaderboard():
    """
    Returns users ordered by duel rating, highest first.
    """
    try:
        limit = int(request.args.get('limit', 20))
    except ValueError:
        return jsonify({'error': 'limit must be an integer'}), 400
    limit = max(1, min(limit, 100))
    users = User.query.order_by(User.rating.desc(), User.username).limit(limit).all()
    return jsonify([u.to_dict() for u in users]), 200


@quiz.route('/users/<int:user_id>/rating-history', methods=['GET'])
def get_rating_history(user_id):
    """
    Returns a user's rating after each rated duel, newest first.
    """
    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({'error': 'User not found'}), 404
    try:
        limit = int(request.args.get('limit', 50))
    except ValueError:
        return jsonify({'error': 'limit must be an integer'}), 400
    limit = max(1, min(limit, 200))
    history = current_app.extensions['arena'].rating_store.history(user_id, limit)
    return jsonify({'user': user.to_dict(), 'history': history}), 200
