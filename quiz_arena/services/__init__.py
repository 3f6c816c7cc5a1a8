"""Duel domain services: matchmaking, session state, timers and rating.

Socket handlers and HTTP routes import from here, keeping transport concerns
separated from core game mechanics.
"""
