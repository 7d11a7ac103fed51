import pytest

from sakina.config import settings
from sakina.exceptions import ValidationError
from sakina.services.s3_service import S3Storage
from sakina.services.storage_service import LocalStorage, StorageService, get_storage, set_storage

API = "/api/v1"


@pytest.mark.parametrize("filename, content_type, size, message", [
    ("notes.txt", "text/plain", 10, "Invalid file type. Allowed types: .mp3, .m4a, .wav, .ogg, .aac"),
    ("calm.mp3", "image/png", 10, "File type does not match file extension"),
    ("calm.mp3", "audio/mpeg", 0, "File is empty"),
    ("calm.mp3", "audio/mpeg", 2048, "File too large. Maximum size: 0.0MB"),
])
def test_validate_file_errors(filename, content_type, size, message):
    with pytest.raises(ValidationError) as exc_info:
        StorageService.validate_file(filename, content_type, size, StorageService.ALLOWED_AUDIO_TYPES, 1024)

    assert exc_info.value.message == message


def test_validate_file_accepts_upper_case_extension():
    StorageService.validate_file("COVER.JPG", "image/jpeg", 10, StorageService.ALLOWED_IMAGE_TYPES, 1024)


def test_generate_key_keeps_extension():
    key = StorageService.generate_key("/audio/", "Night Rain.MP3")

    assert key.startswith("audio/")
    assert key.endswith(".mp3")


def test_local_storage_rejects_keys_outside_root(tmp_path):
    storage = LocalStorage(root=str(tmp_path), base_url="http://cdn.test/")

    with pytest.raises(ValidationError):
        storage.exists("../outside.mp3")
    assert storage.url("/audio/a.mp3") == "http://cdn.test/uploads/audio/a.mp3"


def test_signed_url_passes_through_absolute_urls():
    assert StorageService.signed_url(None) is None
    assert StorageService.signed_url("https://cdn.example.com/a.mp3") == "https://cdn.example.com/a.mp3"
    assert StorageService.signed_url("audio/a.mp3") == "http://testserver/uploads/audio/a.mp3"


# ============================================
# HTTP
# ============================================

def test_upload_audio_and_serve_it(client, admin_headers):
    response = client.post(
        f"{API}/upload/audio",
        files={"file": ("rain.mp3", b"ID3-fake-audio", "audio/mpeg")},
        headers=admin_headers,
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["key"].startswith("audio/")
    assert data["size"] == len(b"ID3-fake-audio")
    assert get_storage().exists(data["key"])

    served = client.get(f"/uploads/{data['key']}")
    assert served.status_code == 200
    assert served.content == b"ID3-fake-audio"


def test_upload_image_into_folder(client, admin_headers):
    response = client.post(
        f"{API}/upload/image",
        params={"folder": "covers"},
        files={"file": ("cover.png", b"\x89PNG-fake", "image/png")},
        headers=admin_headers,
    )

    assert response.status_code == 201
    assert response.json()["data"]["key"].startswith("covers/")


def test_upload_rejects_mismatched_type(client, admin_headers):
    response = client.post(
        f"{API}/upload/audio",
        files={"file": ("rain.mp3", b"data", "image/png")},
        headers=admin_headers,
    )

    assert response.status_code == 400
    assert response.json()["message"] == "File type does not match file extension"


def test_upload_is_admin_only(client, user_headers):
    response = client.post(
        f"{API}/upload/audio",
        files={"file": ("rain.mp3", b"data", "audio/mpeg")},
        headers=user_headers,
    )

    assert response.status_code == 403


def test_delete_uploaded_file(client, admin_headers):
    key = client.post(
        f"{API}/upload/audio",
        files={"file": ("rain.mp3", b"data", "audio/mpeg")},
        headers=admin_headers,
    ).json()["data"]["key"]

    first = client.delete(f"{API}/upload", params={"key": key}, headers=admin_headers)
    second = client.delete(f"{API}/upload", params={"key": key}, headers=admin_headers)

    assert first.json()["data"] == {"deleted": True}
    assert second.json()["data"] == {"deleted": False}
    assert client.delete(f"{API}/upload", params={"key": "../escape.mp3"}, headers=admin_headers).status_code == 400


# ============================================
# S3
# ============================================

class FakeS3Client:
    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[Key] = (Body, ContentType)

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://{Params['Bucket']}.r2.test/{Params['Key']}?expires={ExpiresIn}"


def test_s3_storage_uploads_through_client(client, admin_headers):
    fake = FakeS3Client()
    set_storage(S3Storage(bucket_name="sakina-media", client=fake))

    response = client.post(
        f"{API}/upload/audio",
        files={"file": ("rain.mp3", b"data", "audio/mpeg")},
        headers=admin_headers,
    )

    data = response.json()["data"]
    assert fake.objects[data["key"]] == (b"data", "audio/mpeg")
    assert data["url"] == f"https://sakina-media.r2.test/{data['key']}?expires=3600"


def test_s3_storage_needs_bucket(monkeypatch):
    monkeypatch.setattr(settings, "S3_BUCKET_NAME", None)

    with pytest.raises(ValueError):
        S3Storage(client=FakeS3Client())
