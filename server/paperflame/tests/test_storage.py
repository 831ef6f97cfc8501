import json
import unittest
from unittest.mock import patch

from botocore.exceptions import ClientError

from paperflame.storage import InMemoryStorageClient, S3StorageClient


def _client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "HeadObject")


class InMemoryStorageTests(unittest.TestCase):
    def test_exists_follows_uploads_and_deletes(self):
        storage = InMemoryStorageClient()
        self.assertFalse(storage.exists("a/b.json"))
        storage.upload_json("a/b.json", {"amount": 1})
        self.assertTrue(storage.exists("a/b.json"))
        storage.delete("a/b.json")
        self.assertFalse(storage.exists("a/b.json"))


class S3StorageTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("paperflame.storage.boto3.client")
        self.boto_client = patcher.start()
        self.addCleanup(patcher.stop)
        self.s3 = self.boto_client.return_value
        self.storage = S3StorageClient(bucket="backups", endpoint="https://s3.test")

    def test_exists(self):
        self.assertTrue(self.storage.exists("a/b.json"))
        self.s3.head_object.assert_called_once_with(Bucket="backups", Key="a/b.json")

    def test_missing_key_does_not_exist(self):
        self.s3.head_object.side_effect = _client_error("404")
        self.assertFalse(self.storage.exists("a/b.json"))

    def test_other_errors_propagate(self):
        self.s3.head_object.side_effect = _client_error("403")
        with self.assertRaises(ClientError):
            self.storage.exists("a/b.json")

    def test_upload_json_puts_object(self):
        self.storage.upload_json("a/b.json", {"amount": "1.00"})
        kwargs = self.s3.put_object.call_args.kwargs
        self.assertEqual(kwargs["Bucket"], "backups")
        self.assertEqual(kwargs["Key"], "a/b.json")
        self.assertEqual(kwargs["ContentType"], "application/json")
        self.assertEqual(json.loads(kwargs["Body"]), {"amount": "1.00"})


if __name__ == "__main__":
    unittest.main()
