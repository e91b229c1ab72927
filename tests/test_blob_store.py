"""Tests for blob store utilities."""

from datetime import timedelta

import pytest

from civic_tracker.utils import blob_store


@pytest.fixture(autouse=True)
def aws_env(monkeypatch):
    monkeypatch.setattr("civic_tracker.utils.blob_store.settings.S3_BUCKET_NAME", "bucket")
    monkeypatch.setattr("civic_tracker.utils.blob_store.settings.AWS_REGION", "us-east-1")
    monkeypatch.setattr("civic_tracker.utils.blob_store.settings.AWS_ACCESS_KEY_ID", "key")
    monkeypatch.setattr("civic_tracker.utils.blob_store.settings.AWS_SECRET_ACCESS_KEY", "secret")


class DummyClient:
    def __init__(self, response=None):
        self.calls = []
        self.response = response or {}

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn):
        self.calls.append({"ClientMethod": ClientMethod, "Params": Params, "ExpiresIn": ExpiresIn})
        return "https://signed"

    def delete_objects(self, Bucket, Delete):
        self.calls.append({"Bucket": Bucket, "Delete": Delete})
        return self.response


def test_generate_presigned_get(monkeypatch):
    client = DummyClient()
    monkeypatch.setattr(blob_store, "_s3_client", lambda: client)

    url = blob_store.generate_presigned_get("issues/abc/photo.jpg")

    assert url == "https://signed"
    assert client.calls[0]["ClientMethod"] == "get_object"
    assert client.calls[0]["Params"] == {"Bucket": "bucket", "Key": "issues/abc/photo.jpg"}
    assert client.calls[0]["ExpiresIn"] == 900


def test_generate_presigned_put_sets_content_type(monkeypatch):
    client = DummyClient()
    monkeypatch.setattr(blob_store, "_s3_client", lambda: client)

    blob_store.generate_presigned_put(
        "issues/abc/photo.png", expires=timedelta(minutes=5), content_type="image/png"
    )

    call = client.calls[0]
    assert call["ClientMethod"] == "put_object"
    assert call["Params"]["ContentType"] == "image/png"
    assert call["ExpiresIn"] == 300


def test_missing_bucket(monkeypatch):
    monkeypatch.setattr("civic_tracker.utils.blob_store.settings.S3_BUCKET_NAME", "")

    with pytest.raises(ValueError, match="not configured"):
        blob_store.generate_presigned_get("issues/x/y.jpg")


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("photo.jpg", "photo.jpg"),
        ("../../etc/passwd", "passwd"),
        ("C:\\Users\\me\\My Photo (1).png", "My-Photo-1-.png"),
        ("...", "image"),
    ],
)
def test_sanitise_filename(filename, expected):
    assert blob_store.sanitise_filename(filename) == expected


def test_build_storage_path_is_unique_and_prefixed():
    first = blob_store.build_storage_path("pothole.jpg")
    second = blob_store.build_storage_path("pothole.jpg")

    assert first != second
    prefix, token, name = first.split("/")
    assert prefix == blob_store.ISSUE_PREFIX
    assert len(token) == 36
    assert name == "pothole.jpg"


def test_delete_objects_single_request(monkeypatch):
    client = DummyClient({"Deleted": [{"Key": "issues/a/1.jpg"}, {"Key": "issues/a/2.jpg"}]})
    monkeypatch.setattr(blob_store, "_s3_client", lambda: client)

    deleted = blob_store.delete_objects(["issues/a/1.jpg", "issues/a/2.jpg"])

    assert deleted == ["issues/a/1.jpg", "issues/a/2.jpg"]
    assert len(client.calls) == 1
    assert client.calls[0]["Bucket"] == "bucket"
    assert client.calls[0]["Delete"]["Objects"] == [
        {"Key": "issues/a/1.jpg"},
        {"Key": "issues/a/2.jpg"},
    ]


def test_delete_objects_reports_failures(monkeypatch):
    client = DummyClient({"Errors": [{"Key": "issues/a/1.jpg", "Code": "AccessDenied"}]})
    monkeypatch.setattr(blob_store, "_s3_client", lambda: client)

    with pytest.raises(RuntimeError, match="AccessDenied"):
        blob_store.delete_objects(["issues/a/1.jpg"])


def test_delete_nothing_skips_client(monkeypatch):
    def _fail():
        raise AssertionError("client should not be created")

    monkeypatch.setattr(blob_store, "_s3_client", _fail)

    assert blob_store.delete_objects([]) == []
