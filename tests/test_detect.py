"""
Integration tests for the cluster detection job.

Runs the real ClusterEngine on synthetic profiles against FakeStore and a
FakeFirestore-backed ClusterStore, with the LLM client mocked.
"""

import threading
import unittest
from unittest.mock import MagicMock, patch

from fakes import FakeFirestore, FakeStore, make_two_group_profiles
from src.clustering.clusterer import STATUS_EMPTY, STATUS_INSUFFICIENT, STATUS_OK, ClusterEngine
from src.clustering.detect import ClusterDetectionJob, Deadline, main
from src.clustering.labeler import ClusterLabeler
from src.clustering.store import ClusterRecord, ClusterStore
from src.config import ClusteringConfig, StoreConfig
from src.errors import ClusteringTimeoutError, ErrorKind, ScopeLockedError
from src.llm import LLMProvider, LLMResponse


class FakeClock:
    """Monotonic clock that advances a fixed step per reading."""

    def __init__(self, step=0.0):
        self.now = 0.0
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


class TestDeadline(unittest.TestCase):

    def test_check_passes_within_budget(self):
        clock = FakeClock(step=1.0)
        Deadline(10, clock).check('phase')

    def test_check_raises_when_expired(self):
        clock = FakeClock()
        deadline = Deadline(5, clock)
        clock.now = 6
        with self.assertRaises(ClusteringTimeoutError):
            deadline.check('clustering')


class TestClusterDetectionJob(unittest.TestCase):
    """Test ClusterDetectionJob.run_scope and run_all."""

    def setUp(self):
        profiles = make_two_group_profiles(n_per_group=10)
        self.members = [p.user_id for p in profiles]
        self.store = FakeStore(profiles, orgs={'org1': self.members, 'org2': self.members[:5]})
        self.db = FakeFirestore()
        self.cluster_store = ClusterStore(db=self.db, store_config=StoreConfig(), profile_store=self.store)

        self.llm = MagicMock()
        self.llm.generate.return_value = LLMResponse(
            text='Community Group', model='gemini-2.5-flash', provider=LLMProvider.GEMINI
        )

    def _job(self, config=None, **kwargs):
        config = config or ClusteringConfig()
        return ClusterDetectionJob(
            store=self.store,
            cluster_store=self.cluster_store,
            engine=ClusterEngine(config),
            labeler=ClusterLabeler(client=self.llm),
            config=config,
            owner='test-runner',
            **kwargs
        )

    def test_run_scope_persists_clusters(self):
        outcome = self._job().run_scope('org1')

        self.assertEqual(outcome.status, STATUS_OK)
        self.assertTrue(outcome.persisted)
        self.assertIsNone(outcome.error)
        self.assertEqual(outcome.labels, ['Community Group', 'Community Group'])

        clusters = self.cluster_store.get_clusters('org1')
        self.assertEqual(len(clusters), 2)
        for cluster in clusters:
            self.assertLessEqual(len(cluster['keywords']), 3)
            self.assertGreaterEqual(cluster['member_count'], 3)

    def test_lease_released_after_run(self):
        self._job().run_scope('org1')
        self.assertEqual(self.db.docs('cluster_locks'), {})

    def test_insufficient_profiles_leaves_store_untouched(self):
        self.cluster_store.replace_scope('org2', [
            ClusterRecord(label='Old', keywords=['older'], member_ids=['a', 'b', 'c'])
        ])

        outcome = self._job().run_scope('org2')

        self.assertEqual(outcome.status, STATUS_INSUFFICIENT)
        self.assertEqual(outcome.error, ErrorKind.DATA_INSUFFICIENCY)
        self.assertFalse(outcome.persisted)
        self.assertEqual([c['label'] for c in self.cluster_store.get_clusters('org2')], ['Old'])
        self.llm.generate.assert_not_called()

    def test_empty_result_replaces_by_default(self):
        self.cluster_store.replace_scope('org1', [
            ClusterRecord(label='Old', keywords=['older'], member_ids=['a', 'b', 'c'])
        ])
        for profile in self.store.profiles.values():
            profile.background = 'ab cd ef gh ij kl mn op qr'
            profile.expertise = 'ab cd ef gh ij kl mn'
            profile.interests = ''

        outcome = self._job().run_scope('org1')

        self.assertEqual(outcome.status, STATUS_EMPTY)
        self.assertTrue(outcome.persisted)
        self.assertEqual(outcome.error, ErrorKind.EMPTY_RESULT)
        self.assertEqual(self.cluster_store.get_clusters('org1'), [])

    def test_empty_result_can_keep_previous(self):
        self.cluster_store.replace_scope('org1', [
            ClusterRecord(label='Old', keywords=['older'], member_ids=['a', 'b', 'c'])
        ])
        for profile in self.store.profiles.values():
            profile.background = 'ab cd ef gh ij kl mn op qr'
            profile.expertise = 'ab cd ef gh ij kl mn'
            profile.interests = ''

        outcome = self._job(ClusteringConfig(keep_previous_on_empty=True)).run_scope('org1')

        self.assertEqual(outcome.status, STATUS_EMPTY)
        self.assertFalse(outcome.persisted)
        self.assertEqual([c['label'] for c in self.cluster_store.get_clusters('org1')], ['Old'])

    def test_timeout_persists_nothing(self):
        clock = FakeClock(step=1000.0)
        job = self._job(ClusteringConfig(run_timeout_seconds=600), clock=clock)

        with self.assertRaises(ClusteringTimeoutError):
            job.run_scope('org1')

        self.assertEqual(self.cluster_store.get_clusters('org1'), [])
        self.assertEqual(self.db.docs('cluster_locks'), {})

    def test_locked_scope_is_not_entered(self):
        self.cluster_store.lease('org1', 'other-runner', 900).acquire()

        with self.assertRaises(ScopeLockedError):
            self._job().run_scope('org1')
        self.assertEqual(self.cluster_store.get_clusters('org1'), [])

    def test_in_process_lock_prevents_reentry(self):
        job = self._job()
        lock = job._scope_lock('org1')
        lock.acquire()
        try:
            with self.assertRaises(ScopeLockedError) as ctx:
                job.run_scope('org1')
        finally:
            lock.release()
        self.assertEqual(ctx.exception.owner, 'this process')

    def test_lease_outlives_long_timeout(self):
        config = ClusteringConfig(run_timeout_seconds=1800, lease_seconds=900)
        self.assertEqual(config.effective_lease_seconds, 2100)
        self.assertEqual(ClusteringConfig().effective_lease_seconds, 900)

        with patch.object(self.cluster_store, 'lease', wraps=self.cluster_store.lease) as lease:
            self._job(config).run_scope('org1')

        lease.assert_called_once_with('org1', 'test-runner', 2100)

    def test_concurrent_runs_same_scope(self):
        job = self._job()
        entered = threading.Event()
        release = threading.Event()
        original = self.store.list_scope_profiles

        def slow_load(org_id):
            entered.set()
            release.wait(5)
            return original(org_id)

        errors = []

        def first_run():
            job.run_scope('org1')

        with patch.object(self.store, 'list_scope_profiles', side_effect=slow_load):
            worker = threading.Thread(target=first_run)
            worker.start()
            entered.wait(5)
            try:
                job.run_scope('org1')
            except ScopeLockedError as e:
                errors.append(e)
            release.set()
            worker.join(10)

        self.assertEqual(len(errors), 1)
        self.assertEqual(len(self.cluster_store.get_clusters('org1')), 2)

    def test_dry_run_writes_nothing(self):
        outcome = self._job(dry_run=True).run_scope('org1')

        self.assertEqual(outcome.status, STATUS_OK)
        self.assertFalse(outcome.persisted)
        self.assertEqual(self.db.data, {})

    def test_run_all_continues_after_failure(self):
        job = self._job()
        original = job._run

        def flaky(org_id):
            if org_id == 'org1':
                raise RuntimeError("firestore unavailable")
            return original(org_id)

        with patch.object(job, '_run', side_effect=flaky):
            summary = job.run_all()

        self.assertEqual(summary['total_scopes'], 2)
        self.assertEqual(summary['failed'], 1)
        self.assertIn('org1', summary['failures'])
        self.assertEqual(summary['results']['org2'].status, STATUS_INSUFFICIENT)

    def test_run_all_explicit_scope(self):
        summary = self._job().run_all(['org1'])
        self.assertEqual(summary['succeeded'], 1)
        self.assertEqual(summary['results']['org1'].status, STATUS_OK)


class TestMain(unittest.TestCase):
    """Test CLI wiring."""

    @patch('src.clustering.detect.ClusterStore')
    @patch('src.clustering.detect.FirestoreStore')
    @patch('src.clustering.detect.ClusterDetectionJob')
    def test_main_passes_flags(self, mock_job_cls, mock_store_cls, mock_cluster_store_cls):
        mock_job_cls.return_value.run_all.return_value = {'failed': 0}

        with patch('sys.argv', ['detect', '--org-id', 'org1', '--dry-run', '--adaptive']):
            main()

        kwargs = mock_job_cls.call_args.kwargs
        self.assertTrue(kwargs['dry_run'])
        self.assertTrue(kwargs['config'].use_adaptive_embeddings)
        mock_job_cls.return_value.run_all.assert_called_once_with(['org1'])

    @patch('src.clustering.detect.ClusterStore')
    @patch('src.clustering.detect.FirestoreStore')
    @patch('src.clustering.detect.ClusterDetectionJob')
    def test_main_exits_nonzero_on_failed_scope(self, mock_job_cls, mock_store_cls, mock_cluster_store_cls):
        mock_job_cls.return_value.run_all.return_value = {'failed': 1}

        with patch('sys.argv', ['detect']):
            with self.assertRaises(SystemExit) as ctx:
                main()
        self.assertEqual(ctx.exception.code, 1)


if __name__ == '__main__':
    unittest.main()
