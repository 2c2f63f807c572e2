"""Behaviour tracking and adaptive embeddings."""

from .models import UserBehavior
from .tracker import BehaviorTracker, TrackingOutcome

__all__ = ['BehaviorTracker', 'TrackingOutcome', 'UserBehavior']
