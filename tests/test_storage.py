import json

import httpx
import pytest

from app.storage import StorageError, SupabaseStorage


def make_storage(handler, url="https://proj.supabase.test"):
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return SupabaseStorage(url, "service-role-key", http_client=http_client)


def test_upload_sends_object_with_upsert_header():
    seen = {}

    def handler(request: httpx.Request):
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = request.content
        return httpx.Response(200, json={"Key": "call-videos/c1.mp4"})

    make_storage(handler).upload("call-videos", "c1.mp4", b"mp4-bytes", "video/mp4", upsert=True)

    assert seen["method"] == "POST"
    assert seen["url"] == "https://proj.supabase.test/storage/v1/object/call-videos/c1.mp4"
    assert seen["headers"]["x-upsert"] == "true"
    assert seen["headers"]["content-type"] == "video/mp4"
    assert seen["headers"]["authorization"] == "Bearer service-role-key"
    assert seen["headers"]["apikey"] == "service-role-key"
    assert seen["body"] == b"mp4-bytes"


def test_upload_without_upsert():
    seen = {}

    def handler(request: httpx.Request):
        seen["upsert"] = request.headers["x-upsert"]
        return httpx.Response(200, json={})

    make_storage(handler).upload("voice-notes", "n.webm", b"x", "audio/webm", upsert=False)
    assert seen["upsert"] == "false"


def test_upload_non_2xx_raises():
    storage = make_storage(lambda request: httpx.Response(409, text="Duplicate"))
    with pytest.raises(StorageError, match="409 - Duplicate"):
        storage.upload("voice-notes", "n.webm", b"x", "audio/webm", upsert=False)


def test_upload_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(StorageError, match="connection refused"):
        make_storage(handler).upload("call-videos", "c1.mp4", b"x", "video/mp4")


def test_unconfigured_storage_raises():
    storage = SupabaseStorage("", "")
    with pytest.raises(StorageError, match="not configured"):
        storage.create_signed_url("call-recordings", "c1.mp3")


def test_public_url():
    storage = SupabaseStorage("https://proj.supabase.test/", "k")
    assert storage.public_url("call-videos", "c1.mp4") == (
        "https://proj.supabase.test/storage/v1/object/public/call-videos/c1.mp4"
    )


def test_signed_url_relative_path_gets_storage_prefix():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={"signedURL": "/object/sign/call-recordings/c1.mp3?token=abc"})

    url = make_storage(handler).create_signed_url("call-recordings", "c1.mp3", 3600)

    assert url == "https://proj.supabase.test/storage/v1/object/sign/call-recordings/c1.mp3?token=abc"
    assert seen["url"] == "https://proj.supabase.test/storage/v1/object/sign/call-recordings/c1.mp3"
    assert json.loads(seen["body"]) == {"expiresIn": 3600}


def test_signed_url_absolute_is_returned_as_is():
    storage = make_storage(lambda request: httpx.Response(200, json={"signedUrl": "https://cdn.test/x?token=1"}))
    assert storage.create_signed_url("call-recordings", "c1.mp3") == "https://cdn.test/x?token=1"


def test_signed_url_errors():
    not_found = make_storage(lambda request: httpx.Response(404, text="Object not found"))
    with pytest.raises(StorageError, match="404"):
        not_found.create_signed_url("call-recordings", "c1.mp3")

    empty = make_storage(lambda request: httpx.Response(200, json={}))
    with pytest.raises(StorageError, match="No signed URL"):
        empty.create_signed_url("call-recordings", "c1.mp3")


def test_signed_url_non_json_body_raises_storage_error():
    storage = make_storage(lambda request: httpx.Response(200, text="<html>gateway</html>"))
    with pytest.raises(StorageError, match="Unreadable sign response"):
        storage.create_signed_url("call-recordings", "c1.mp3")


def test_download_streams_to_file(tmp_path):
    audio = b"ID3" + bytes(range(256)) * 64

    def handler(request: httpx.Request):
        return httpx.Response(200, content=audio)

    dest = tmp_path / "audio.mp3"
    written = make_storage(handler).download_to_file("https://cdn.test/c1.mp3?token=1", str(dest))

    assert written == len(audio)
    assert dest.read_bytes() == audio


def test_download_non_2xx_raises(tmp_path):
    storage = make_storage(lambda request: httpx.Response(403, text="expired"))
    with pytest.raises(StorageError, match="Failed to download audio"):
        storage.download_to_file("https://cdn.test/c1.mp3", str(tmp_path / "audio.mp3"))


def test_status_route_survives_unreadable_sign_response(client, make_call):
    from app import clients
    from app.main import app

    call = make_call(recording_url="https://x/r.mp3")
    app.dependency_overrides[clients.get_storage] = lambda: make_storage(
        lambda request: httpx.Response(200, text="not json")
    )

    resp = client.get(f"/api/calls/{call.id}")

    assert resp.status_code == 200
    assert resp.json()["recordingUrl"] is None
