"""Tests for the R2 storage adapter."""

from unittest.mock import MagicMock

import pytest

from person_removal_service.config import Settings
from person_removal_service.storage import ObjectStorage


def _settings(**overrides):
    values = dict(
        r2_endpoint="https://acct.r2.cloudflarestorage.com",
        r2_access_key_id="key",
        r2_secret_access_key="secret",
        r2_bucket_name="results",
        r2_public_base_url="https://pub.r2.dev",
    )
    values.update(overrides)
    return Settings(**values)


class TestObjectStorage:
    def test_is_configured(self):
        assert ObjectStorage(_settings()).is_configured
        assert not ObjectStorage(_settings(r2_bucket_name=None)).is_configured

    def test_unconfigured_client_raises(self):
        storage = ObjectStorage(_settings(r2_endpoint=None))
        with pytest.raises(RuntimeError):
            storage.upload_bytes(b"x", "a.png")

    def test_public_url_with_base(self):
        storage = ObjectStorage(_settings(r2_public_base_url="https://pub.r2.dev/"))
        assert storage.public_url("person-removal/a.png") == "https://pub.r2.dev/person-removal/a.png"

    def test_public_url_presigned(self):
        client = MagicMock()
        client.generate_presigned_url.return_value = "https://signed"
        storage = ObjectStorage(_settings(r2_public_base_url=None), client=client)

        assert storage.public_url("a.png") == "https://signed"
        kwargs = client.generate_presigned_url.call_args.kwargs
        assert kwargs["Params"] == {"Bucket": "results", "Key": "a.png"}
        assert kwargs["ExpiresIn"] == 3600

    def test_upload_bytes_strips_bucket_prefix(self):
        client = MagicMock()
        storage = ObjectStorage(_settings(), client=client)
        url = storage.upload_bytes(b"png", "results/person-removal/a.png")

        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Key"] == "person-removal/a.png"
        assert kwargs["Bucket"] == "results"
        assert kwargs["ContentType"] == "image/png"
        assert url == "https://pub.r2.dev/person-removal/a.png"

    def test_upload_from_data_url(self):
        client = MagicMock()
        storage = ObjectStorage(_settings(), client=client)
        url = storage.upload_from_url("data:image/jpeg;base64,aGVsbG8=")

        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Body"] == b"hello"
        assert kwargs["ContentType"] == "image/jpeg"
        assert kwargs["Key"].startswith("person-removal/")
        assert url.startswith("https://pub.r2.dev/person-removal/")

    def test_upload_from_url_with_explicit_key(self):
        client = MagicMock()
        storage = ObjectStorage(_settings(), client=client)
        storage.upload_from_url("data:image/png;base64,aGVsbG8=", key="out/1.png")
        assert client.put_object.call_args.kwargs["Key"] == "out/1.png"
