"""
Unit tests for storage.py

The GridFS bucket is replaced by a MagicMock: uploads, downloads and
deletes are checked at the bucket call boundary.
"""

from unittest.mock import patch

import pytest
from bson import ObjectId
from gridfs.errors import NoFile

import database
import storage
from storage import BUCKET_NAME, delete_image, image_url, open_image, save_image


@pytest.fixture
def bucket():
    with patch("storage.gridfs.GridFSBucket") as bucket_cls:
        yield bucket_cls.return_value


class TestSaveImage:

    def test_uploads_with_content_type(self, bucket, mongo_db):
        file_id = ObjectId()
        bucket.upload_from_stream.return_value = file_id

        result = save_image(b"\x89PNG-bytes", "image/png", filename="beach.png")

        assert result == str(file_id)
        bucket.upload_from_stream.assert_called_once_with(
            "beach.png", b"\x89PNG-bytes", metadata={"content_type": "image/png"}
        )
        storage.gridfs.GridFSBucket.assert_called_once_with(mongo_db, bucket_name=BUCKET_NAME)

    def test_default_filename(self, bucket):
        bucket.upload_from_stream.return_value = ObjectId()
        save_image(b"data", "image/jpeg")
        assert bucket.upload_from_stream.call_args.args[0] == "upload"

    def test_missing_database(self, bucket, monkeypatch):
        monkeypatch.setattr(database, "db", None)
        with pytest.raises(RuntimeError):
            save_image(b"data", "image/jpeg")
        bucket.upload_from_stream.assert_not_called()


class TestOpenImage:

    def test_opens_stream(self, bucket):
        file_id = ObjectId()
        stream = open_image(str(file_id))

        assert stream is bucket.open_download_stream.return_value
        bucket.open_download_stream.assert_called_once_with(file_id)

    def test_malformed_id(self, bucket):
        assert open_image("not-an-id") is None
        bucket.open_download_stream.assert_not_called()

    def test_unknown_file(self, bucket):
        bucket.open_download_stream.side_effect = NoFile("no file")
        assert open_image(str(ObjectId())) is None


class TestDeleteImage:

    def test_deletes_file(self, bucket):
        file_id = ObjectId()
        delete_image(str(file_id))
        bucket.delete.assert_called_once_with(file_id)

    def test_unknown_file_is_ignored(self, bucket):
        bucket.delete.side_effect = NoFile("no file")
        delete_image(str(ObjectId()))

    def test_malformed_id_is_ignored(self, bucket):
        delete_image("nope")
        bucket.delete.assert_not_called()


def test_image_url():
    assert image_url("abc") == "/api/images/abc"
