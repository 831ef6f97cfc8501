import unittest
from unittest.mock import MagicMock, patch

from redis import exceptions as redis_exceptions

from paperflame.queue import RedisJobQueue


class RedisJobQueueTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("paperflame.queue.redis.Redis.from_url")
        self.from_url = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = MagicMock()
        self.from_url.return_value = self.client
        self.queue = RedisJobQueue(url="redis://localhost:6379/0", queue_key="jobs")

    def test_enqueue_and_depth(self):
        self.client.llen.return_value = 3
        self.queue.enqueue("job-1")
        self.client.rpush.assert_called_once_with("jobs", "job-1")
        self.assertEqual(self.queue.depth(), 3)

    def test_blocking_dequeue(self):
        self.client.blpop.return_value = ("jobs", "job-1")
        self.assertEqual(self.queue.dequeue(timeout=5), "job-1")
        self.client.blpop.assert_called_once_with(["jobs"], timeout=5)

        self.client.blpop.return_value = None
        self.assertIsNone(self.queue.dequeue(timeout=5))

    def test_non_blocking_dequeue(self):
        self.client.lpop.return_value = None
        self.assertIsNone(self.queue.dequeue(block=False))
        self.client.lpop.assert_called_once_with("jobs")

    def test_connection_loss_reconnects(self):
        self.client.blpop.side_effect = redis_exceptions.ConnectionError("gone")
        self.assertIsNone(self.queue.dequeue(timeout=1))
        self.assertEqual(self.from_url.call_count, 2)


if __name__ == "__main__":
    unittest.main()
