"""
Unit tests for behaviour tracking.

Covers the EMA state transitions, engagement scoring, adaptive embedding
weights, and the never-raise guarantee of the tracking entry points.
"""

import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

import numpy as np

from fakes import FakeEmbedder, FakeStore, make_profile
from src.behavior.models import UserBehavior
from src.behavior.tracker import (
    BehaviorTracker,
    apply_save,
    apply_search,
    apply_view,
    behavior_weight,
    blend_embeddings,
    calculate_engagement_score,
    ema_blend,
)
from src.config import BehaviorConfig
from src.errors import ErrorKind

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestEngagementScore(unittest.TestCase):

    def test_weights(self):
        self.assertEqual(calculate_engagement_score(1, 1, 2), 9)
        self.assertEqual(calculate_engagement_score(2, 1, 0), 9)
        self.assertEqual(calculate_engagement_score(0, 0, 7), 7)

    def test_caps(self):
        self.assertEqual(calculate_engagement_score(100, 0, 0), 30)
        self.assertEqual(calculate_engagement_score(0, 100, 0), 40)
        self.assertEqual(calculate_engagement_score(0, 0, 100), 30)
        self.assertEqual(calculate_engagement_score(100, 100, 100), 100)

    def test_zero(self):
        self.assertEqual(calculate_engagement_score(0, 0, 0), 0)


class TestBlending(unittest.TestCase):

    def test_ema_search_weight(self):
        blended = ema_blend(np.array([1.0, 0.0]), np.array([0.0, 1.0]), 0.2)
        np.testing.assert_allclose(blended, [0.8, 0.2])

    def test_ema_seeds_missing_vector(self):
        np.testing.assert_allclose(ema_blend(None, np.array([0.0, 1.0]), 0.3), [0.0, 1.0])

    def test_ema_keeps_old_without_signal(self):
        old = np.array([1.0, 0.0])
        self.assertIs(ema_blend(old, None, 0.2), old)

    def test_ema_ignores_mismatched_signal(self):
        old = np.array([1.0, 0.0])
        self.assertIs(ema_blend(old, np.array([1.0, 0.0, 0.0]), 0.2), old)

    def test_behavior_weight_bounds(self):
        config = BehaviorConfig()
        self.assertAlmostEqual(behavior_weight(0, config), 0.2)
        self.assertAlmostEqual(behavior_weight(50, config), 0.3)
        self.assertAlmostEqual(behavior_weight(100, config), 0.4)
        self.assertAlmostEqual(behavior_weight(1000, config), 0.4)

    def test_blend_embeddings(self):
        blended = blend_embeddings(np.array([1.0, 0.0]), np.array([0.0, 1.0]), 0.25)
        np.testing.assert_allclose(blended, [0.75, 0.25])

    def test_blend_without_behaviour(self):
        profile = np.array([1.0, 0.0])
        self.assertIs(blend_embeddings(profile, None, 0.4), profile)


class TestTransitions(unittest.TestCase):

    def setUp(self):
        self.config = BehaviorConfig()

    def test_first_search_creates_record(self):
        behavior = apply_search(None, 'u1', 'grid storage', np.array([0.0, 1.0]), self.config, NOW)

        np.testing.assert_allclose(behavior.adaptive_vector, [0.0, 1.0])
        self.assertEqual(behavior.total_searches, 1)
        self.assertEqual(behavior.recent_search_terms, ['grid storage'])
        self.assertEqual(behavior.engagement_score, 2)
        self.assertEqual(behavior.last_interaction, NOW)

    def test_search_blends_and_prepends(self):
        existing = UserBehavior(
            user_id='u1', adaptive_vector=np.array([1.0, 0.0]),
            recent_search_terms=['older'], total_searches=1,
        )
        behavior = apply_search(existing, 'u1', 'newer', np.array([0.0, 1.0]), self.config, NOW)

        np.testing.assert_allclose(behavior.adaptive_vector, [0.8, 0.2])
        self.assertEqual(behavior.recent_search_terms, ['newer', 'older'])
        self.assertEqual(behavior.total_searches, 2)

    def test_recent_searches_capped(self):
        existing = UserBehavior(user_id='u1', recent_search_terms=[f"q{i}" for i in range(15)])
        behavior = apply_search(existing, 'u1', 'latest', None, self.config, NOW)

        self.assertEqual(len(behavior.recent_search_terms), 15)
        self.assertEqual(behavior.recent_search_terms[0], 'latest')
        self.assertNotIn('q14', behavior.recent_search_terms)

    def test_save_blends_with_save_weight(self):
        existing = UserBehavior(user_id='u1', adaptive_vector=np.array([1.0, 0.0]))
        behavior = apply_save(existing, 'u1', np.array([0.0, 1.0]), self.config, NOW)

        np.testing.assert_allclose(behavior.adaptive_vector, [0.7, 0.3])
        self.assertEqual(behavior.total_saves, 1)
        self.assertEqual(behavior.engagement_score, 5)

    def test_first_save_seeds_vector(self):
        behavior = apply_save(None, 'u1', np.array([0.0, 1.0]), self.config, NOW)
        np.testing.assert_allclose(behavior.adaptive_vector, [0.0, 1.0])

    def test_view_counts_only(self):
        existing = UserBehavior(user_id='u1', adaptive_vector=np.array([1.0, 0.0]))
        behavior = apply_view(existing, 'u1', NOW)

        np.testing.assert_allclose(behavior.adaptive_vector, [1.0, 0.0])
        self.assertEqual(behavior.total_profile_views, 1)
        self.assertEqual(behavior.engagement_score, 1)


class TestBehaviorTracker(unittest.TestCase):

    def setUp(self):
        self.store = FakeStore([
            make_profile('u1', [1.0, 0.0]),
            make_profile('u2', [0.0, 1.0]),
        ])
        self.embedder = FakeEmbedder({'grid storage': [0.0, 1.0]})
        self.tracker = BehaviorTracker(self.store, self.embedder, clock=lambda: NOW)

    def test_track_search_persists(self):
        outcome = self.tracker.track_search('u1', 'grid storage')

        self.assertTrue(outcome.recorded)
        self.assertIsNone(outcome.error)
        saved = self.store.get_behavior('u1')
        np.testing.assert_allclose(saved.adaptive_vector, [0.0, 1.0])
        self.assertEqual(saved.total_searches, 1)

    def test_track_search_without_embedding_still_counts(self):
        outcome = self.tracker.track_search('u1', 'unknown query')

        self.assertTrue(outcome.recorded)
        self.assertEqual(outcome.error, ErrorKind.EXTERNAL_SERVICE_FAILURE)
        saved = self.store.get_behavior('u1')
        self.assertIsNone(saved.adaptive_vector)
        self.assertEqual(saved.total_searches, 1)

    def test_track_save_uses_saved_profile_vector(self):
        self.store.behaviors['u1'] = UserBehavior(user_id='u1', adaptive_vector=np.array([1.0, 0.0]))

        outcome = self.tracker.track_save('u1', 'u2')

        self.assertTrue(outcome.recorded)
        np.testing.assert_allclose(self.store.get_behavior('u1').adaptive_vector, [0.7, 0.3])

    def test_track_save_of_missing_profile(self):
        outcome = self.tracker.track_save('u1', 'ghost')

        self.assertTrue(outcome.recorded)
        self.assertEqual(outcome.error, ErrorKind.MALFORMED_VECTOR)
        self.assertEqual(self.store.get_behavior('u1').total_saves, 1)

    def test_track_view(self):
        self.tracker.track_view('u1', 'u2')
        self.tracker.track_view('u1', 'u2')
        self.assertEqual(self.store.get_behavior('u1').total_profile_views, 2)

    def test_tracking_never_raises(self):
        store = MagicMock()
        store.get_behavior.side_effect = RuntimeError("firestore down")
        tracker = BehaviorTracker(store, self.embedder, clock=lambda: NOW)

        for outcome in (
            tracker.track_search('u1', 'grid storage'),
            tracker.track_save('u1', 'u2'),
            tracker.track_view('u1', 'u2'),
        ):
            self.assertFalse(outcome.recorded)
            self.assertEqual(outcome.error, ErrorKind.EXTERNAL_SERVICE_FAILURE)
            self.assertIn('firestore down', outcome.message)

    def test_adaptive_embedding_without_behaviour(self):
        np.testing.assert_allclose(self.tracker.get_adaptive_embedding('u1'), [1.0, 0.0])

    def test_adaptive_embedding_blend(self):
        self.store.behaviors['u1'] = UserBehavior(
            user_id='u1', adaptive_vector=np.array([0.0, 1.0]), engagement_score=50
        )
        np.testing.assert_allclose(self.tracker.get_adaptive_embedding('u1'), [0.7, 0.3])

    def test_adaptive_embedding_without_profile_vector(self):
        self.store.profiles['u3'] = make_profile('u3', None)
        self.assertIsNone(self.tracker.get_adaptive_embedding('u3'))
        self.assertIsNone(self.tracker.get_adaptive_embedding('missing'))


if __name__ == '__main__':
    unittest.main()
