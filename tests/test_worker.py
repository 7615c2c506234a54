import logging
import threading
import unittest
from types import SimpleNamespace
from unittest.mock import Mock

logging.disable(logging.CRITICAL)


class _BlockingQueue:
    """dequeue() parks until released so a second tick can overlap it."""

    def __init__(self, jobs=None):
        self.jobs = list(jobs or [])
        self.entered = threading.Event()
        self.release = threading.Event()
        self.dequeue_calls = 0

    def dequeue(self, batch_size, visibility_timeout):
        self.dequeue_calls += 1
        self.entered.set()
        self.release.wait(timeout=5)
        return self.jobs


class _FakeProcessor:
    def __init__(self, queue, outcomes=None):
        self.queue = queue
        self.outcomes = list(outcomes or [])
        self.processed = []

    def process(self, job, leased_at=None):
        self.processed.append(job.msg_id)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _worker(processor, **kwargs):
    from tasklink.services.link_processor import WorkerConfig
    from tasklink.worker import TaskLinkWorker

    return TaskLinkWorker(
        lambda db: processor,
        config=WorkerConfig(batch_size=5, visibility_timeout_seconds=60),
        session_factory=Mock,
        scheduler=kwargs.pop("scheduler", Mock(running=False)),
        **kwargs,
    )


class TaskLinkWorkerTests(unittest.TestCase):
    def test_overlapping_tick_is_a_no_op(self):
        queue = _BlockingQueue()
        worker = _worker(_FakeProcessor(queue))
        results = {}

        first = threading.Thread(target=lambda: results.setdefault("first", worker.run_batch()))
        first.start()
        self.assertTrue(queue.entered.wait(timeout=5))
        self.assertTrue(worker.draining)

        # Second tick while the first batch is still draining.
        self.assertIsNone(worker.run_batch())

        queue.release.set()
        first.join(timeout=5)
        self.assertEqual(queue.dequeue_calls, 1)
        self.assertIsNotNone(results["first"])
        self.assertFalse(worker.draining)

    def test_batch_continues_after_a_job_raises(self):
        from tasklink.services.link_processor import JobOutcome

        queue = _BlockingQueue([SimpleNamespace(msg_id=1), SimpleNamespace(msg_id=2)])
        queue.release.set()
        processor = _FakeProcessor(queue, [RuntimeError("boom"), JobOutcome.LINKED])

        stats = _worker(processor).run_batch()

        self.assertEqual(processor.processed, [1, 2])
        self.assertEqual(stats["errors"], 1)
        self.assertEqual(stats["retry"], 1)
        self.assertEqual(stats["linked"], 1)

    def test_dequeue_failure_is_contained(self):
        processor = _FakeProcessor(Mock(dequeue=Mock(side_effect=RuntimeError("db down"))))

        stats = _worker(processor).run_batch()

        self.assertEqual(stats["errors"], 1)
        self.assertEqual(processor.processed, [])

    def test_start_registers_single_instance_interval_job(self):
        from tasklink.worker import DRAIN_JOB_ID

        scheduler = Mock(running=False)
        worker = _worker(_FakeProcessor(_BlockingQueue()), scheduler=scheduler)

        worker.start()
        worker.start()

        self.assertTrue(worker.running)
        self.assertEqual(scheduler.add_job.call_count, 1)
        kwargs = scheduler.add_job.call_args.kwargs
        self.assertEqual(kwargs["id"], DRAIN_JOB_ID)
        self.assertEqual(kwargs["max_instances"], 1)
        self.assertIn("next_run_time", kwargs)
        scheduler.start.assert_called_once()

        worker.stop()
        scheduler.shutdown.assert_called_once_with(wait=True)
        self.assertFalse(worker.running)


if __name__ == "__main__":
    unittest.main()
