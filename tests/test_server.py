import os
import json
import shutil
import asyncio
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

import config
from main import app
from app.services.storage_manager import StorageManager

TEST_UPLOAD_DIR = Path(config.UPLOAD_DIR)

# Create a test client
client = TestClient(app)


@pytest.fixture(autouse=True)
def setup_and_teardown():
    """Give every test a fresh, initialized storage manager."""
    shutil.rmtree(TEST_UPLOAD_DIR, ignore_errors=True)

    test_storage_manager = StorageManager(TEST_UPLOAD_DIR)
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(test_storage_manager.initialize())
    finally:
        loop.close()
    app.state.storage_manager = test_storage_manager

    yield test_storage_manager

    shutil.rmtree(TEST_UPLOAD_DIR, ignore_errors=True)


def upload(name="a.txt", content=b"0123456789", mime_type="text/plain"):
    return client.post("/storage/upload", files={"file": (name, content, mime_type)})


def read_index():
    return json.loads((TEST_UPLOAD_DIR / config.METADATA_FILENAME).read_text())


def blob_files():
    return sorted(
        p.name for p in TEST_UPLOAD_DIR.iterdir()
        if p.is_file() and p.name != config.METADATA_FILENAME
    )


def test_upload_info_download_scenario():
    """Upload a 10 byte text file, then read its metadata and content back."""
    response = upload()
    assert response.status_code == 201
    record = response.json()
    assert record["originalName"] == "a.txt"
    assert record["size"] == 10
    assert record["mimeType"] == "text/plain"
    assert record["storedName"] == f"{record['id']}.txt"
    assert "uploadedAt" in record

    response = client.get(f"/storage/files/{record['id']}/info")
    assert response.status_code == 200
    assert response.json() == record

    response = client.get(f"/storage/files/{record['id']}")
    assert response.status_code == 200
    assert response.content == b"0123456789"
    assert response.headers["content-type"] == "text/plain"
    assert response.headers["content-length"] == "10"
    assert response.headers["content-disposition"] == 'inline; filename="a.txt"'


def test_binary_round_trip():
    content = os.urandom(4096)
    response = upload("photo.png", content, "image/png")
    assert response.status_code == 201

    response = client.get(f"/storage/files/{response.json()['id']}")
    assert response.status_code == 200
    assert response.content == content
    assert response.headers["content-type"] == "image/png"


def test_upload_without_extension():
    response = upload("README", b"plain", "text/plain")
    assert response.status_code == 201
    record = response.json()
    assert record["storedName"] == record["id"]


def test_upload_rejects_large_file():
    response = upload("big.txt", b"x" * (config.MAX_FILE_SIZE + 1), "text/plain")
    assert response.status_code == 400
    assert "File size exceeds limit" in response.text
    assert not (TEST_UPLOAD_DIR / config.METADATA_FILENAME).exists()
    assert blob_files() == []


def test_upload_accepts_file_at_size_limit():
    response = upload("edge.txt", b"x" * config.MAX_FILE_SIZE, "text/plain")
    assert response.status_code == 201
    assert response.json()["size"] == config.MAX_FILE_SIZE


def test_upload_rejects_disallowed_type():
    response = upload("script.sh", b"echo hi", "application/x-sh")
    assert response.status_code == 400
    assert "File type not allowed" in response.text
    assert not (TEST_UPLOAD_DIR / config.METADATA_FILENAME).exists()
    assert blob_files() == []


def test_upload_without_file():
    response = client.post("/storage/upload")
    assert response.status_code == 400
    assert "No file provided" in response.text


def test_upload_with_text_field_instead_of_file():
    response = client.post("/storage/upload", data={"file": "not a file"})
    assert response.status_code == 400
    assert response.json() == {"detail": "No file provided"}
    assert blob_files() == []


def test_download_streams_large_file():
    content = os.urandom(50 * 1024)  # several 8KB chunks
    record = upload("archive.zip", content, "application/zip").json()

    with client.stream("GET", f"/storage/files/{record['id']}") as response:
        assert response.status_code == 200
        assert response.headers["content-length"] == str(len(content))
        assert response.headers["content-type"] == "application/zip"
        received = b"".join(response.iter_bytes())

    assert received == content


def test_get_unknown_file():
    response = client.get("/storage/files/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {"detail": "File not found"}

    response = client.get("/storage/files/does-not-exist/info")
    assert response.status_code == 404


def test_get_file_with_missing_blob():
    """A record whose blob vanished is reported as 404, not as a server error."""
    record = upload().json()
    (TEST_UPLOAD_DIR / record["storedName"]).unlink()

    response = client.get(f"/storage/files/{record['id']}")
    assert response.status_code == 404
    assert response.json() == {"detail": "File not found"}


def test_delete_file():
    record = upload().json()

    response = client.delete(f"/storage/files/{record['id']}")
    assert response.status_code == 200
    assert response.json() == {"message": "File deleted successfully"}

    # Verify file is gone
    assert client.get(f"/storage/files/{record['id']}").status_code == 404
    assert client.get(f"/storage/files/{record['id']}/info").status_code == 404
    ids = [r["id"] for r in client.get("/storage/files").json()]
    assert record["id"] not in ids
    assert blob_files() == []
    assert read_index() == []


def test_delete_nonexistent_file():
    response = client.delete("/storage/files/does-not-exist")
    assert response.status_code == 404

    record = upload().json()
    assert client.delete(f"/storage/files/{record['id']}").status_code == 200
    assert client.delete(f"/storage/files/{record['id']}").status_code == 404


def test_list_files_pagination():
    ids = [upload(f"file{i}.txt", f"content {i}".encode()).json()["id"] for i in range(5)]

    response = client.get("/storage/files")
    assert response.status_code == 200
    assert [r["id"] for r in response.json()] == ids

    response = client.get("/storage/files", params={"offset": 1, "limit": 2})
    assert [r["id"] for r in response.json()] == ids[1:3]

    response = client.get("/storage/files", params={"offset": 3, "limit": 100})
    assert [r["id"] for r in response.json()] == ids[3:]

    response = client.get("/storage/files", params={"offset": 5})
    assert response.status_code == 200
    assert response.json() == []

    response = client.get("/storage/files", params={"limit": 0})
    assert response.json() == []


def test_list_files_rejects_non_integer_params():
    response = client.get("/storage/files", params={"limit": "many"})
    assert response.status_code == 422


def test_non_ascii_filename_download():
    record = upload("résumé.txt", b"hello", "text/plain").json()
    assert record["originalName"] == "résumé.txt"

    response = client.get(f"/storage/files/{record['id']}")
    assert response.status_code == 200
    disposition = response.headers["content-disposition"]
    assert disposition.startswith('inline; filename="r?sum?.txt"')
    assert "filename*=UTF-8''r%C3%A9sum%C3%A9.txt" in disposition


def test_health_check():
    response = client.get("/storage/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert "timestamp" in body


def test_index_document_matches_uploads():
    first = upload("one.json", b'{"a": 1}', "application/json").json()
    second = upload("two.pdf", b"%PDF-1.4", "application/pdf").json()

    assert read_index() == [first, second]
    assert blob_files() == sorted([first["storedName"], second["storedName"]])


@pytest.mark.asyncio
async def test_concurrent_uploads():
    """Parallel uploads must all be recorded in the index."""
    count = 25
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        responses = await asyncio.gather(*[
            async_client.post(
                "/storage/upload",
                files={"file": (f"file{i}.txt", f"payload {i}".encode(), "text/plain")},
            )
            for i in range(count)
        ])

        assert all(r.status_code == 201 for r in responses)
        records = [r.json() for r in responses]
        assert len({r["id"] for r in records}) == count

        listing = await async_client.get("/storage/files", params={"limit": 1000})
        assert len(listing.json()) == count

        for i, record in enumerate(records):
            response = await async_client.get(f"/storage/files/{record['id']}")
            assert response.status_code == 200
            assert response.content == f"payload {i}".encode()

    assert len(read_index()) == count
    assert len(blob_files()) == count


if __name__ == "__main__":
    pytest.main(["-xvs", __file__])
