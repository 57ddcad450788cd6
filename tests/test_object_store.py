"""
Tests for the filesystem and Azure Blob object stores.
"""

import pytest
from azure.core.exceptions import ResourceNotFoundError

from pipeline.config import PipelineConfig
from storage import (
    AzureBlobObjectStore,
    FilesystemObjectStore,
    ObjectNotFoundError,
    blob_name_from_url,
    blob_path,
    build_object_store,
)


CONTAINER_URL = "https://captions.blob.core.windows.net/caption-videos"


class FakeDownloader:
    def __init__(self, data):
        self.data = data

    async def readall(self):
        return self.data

    async def readinto(self, stream):
        stream.write(self.data)
        return len(self.data)


class FakeBlobClient:
    def __init__(self, container, blob_name):
        self.container = container
        self.blob_name = blob_name
        self.url = f"{container.url}/{blob_name}"

    async def upload_blob(self, data, overwrite=False, content_settings=None):
        if not isinstance(data, bytes):
            data = data.read()
        self.container.blobs[self.blob_name] = (data, content_settings.content_type)

    async def download_blob(self):
        if self.blob_name not in self.container.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        return FakeDownloader(self.container.blobs[self.blob_name][0])

    async def exists(self):
        return self.blob_name in self.container.blobs

    async def delete_blob(self):
        if self.blob_name not in self.container.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        del self.container.blobs[self.blob_name]


class FakeContainerClient:
    """In-memory stand-in for azure.storage.blob.aio.ContainerClient."""

    def __init__(self, url=CONTAINER_URL):
        self.url = url
        self.container_name = url.rsplit("/", 1)[-1]
        self.blobs = {}
        self.created = 0
        self.closed = False

    def get_blob_client(self, blob):
        return FakeBlobClient(self, blob)

    async def exists(self):
        return self.created > 0

    async def create_container(self):
        self.created += 1

    async def close(self):
        self.closed = True

class TestBlobPath:
    def test_layout(self):
        assert blob_path("s1", "thumbnails", "chunk_0.jpg") == "sessions/s1/thumbnails/chunk_0.jpg"

    def test_unknown_category(self):
        with pytest.raises(ValueError):
            blob_path("s1", "scratch", "x")


class TestFilesystemObjectStore:
    @pytest.mark.asyncio
    async def test_put_and_get_bytes(self, tmp_path):
        store = FilesystemObjectStore(str(tmp_path))
        url = await store.put_bytes(b"[]", "sessions/s1/transcriptions/chunk_0.json", "application/json")

        assert url.startswith("file://")
        assert await store.get_bytes("sessions/s1/transcriptions/chunk_0.json") == b"[]"
        assert await store.get_bytes(url) == b"[]"

    @pytest.mark.asyncio
    async def test_put_file_overwrites_and_get_copies_out(self, tmp_path):
        store = FilesystemObjectStore(str(tmp_path / "store"))
        source = tmp_path / "preview.mp4"
        source.write_bytes(b"first")
        await store.put_file(str(source), "sessions/s1/captioned_previews/chunk_0.mp4")
        source.write_bytes(b"second")
        await store.put_file(str(source), "sessions/s1/captioned_previews/chunk_0.mp4")

        target = tmp_path / "out" / "copy.mp4"
        await store.get("sessions/s1/captioned_previews/chunk_0.mp4", str(target))
        assert target.read_bytes() == b"second"

    @pytest.mark.asyncio
    async def test_public_urls(self, tmp_path):
        store = FilesystemObjectStore(str(tmp_path), public_url="http://localhost:8000/files/")
        url = await store.put_bytes(b"audio", "sessions/s1/chunks/chunk_0_audio.mp3")

        assert url == "http://localhost:8000/files/sessions/s1/chunks/chunk_0_audio.mp3"
        assert store.is_store_reference(url)
        assert store.is_store_reference("sessions/s1/chunks/chunk_0_audio.mp3")
        assert not store.is_store_reference("https://cdn.example.com/video.mp4")
        assert await store.get_bytes(url) == b"audio"

    @pytest.mark.asyncio
    async def test_missing_objects(self, tmp_path):
        store = FilesystemObjectStore(str(tmp_path))
        with pytest.raises(ObjectNotFoundError) as exc_info:
            await store.get("sessions/s1/original/video.mp4", str(tmp_path / "v.mp4"))
        assert exc_info.value.path == "sessions/s1/original/video.mp4"
        assert not await store.exists("sessions/s1/original/video.mp4")

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        store = FilesystemObjectStore(str(tmp_path))
        await store.put_bytes(b"x", "sessions/s1/output/captions.srt")
        await store.delete("sessions/s1/output/captions.srt")
        await store.delete("sessions/s1/output/captions.srt")
        assert not await store.exists("sessions/s1/output/captions.srt")

    @pytest.mark.asyncio
    async def test_paths_cannot_escape_root(self, tmp_path):
        store = FilesystemObjectStore(str(tmp_path / "store"))
        with pytest.raises(ValueError):
            await store.put_bytes(b"x", "../outside.txt")


class TestBlobNameFromUrl:
    @pytest.mark.parametrize("value,expected", [
        (f"{CONTAINER_URL}/sessions/s1/chunks/chunk_0.mp4", "sessions/s1/chunks/chunk_0.mp4"),
        (f"{CONTAINER_URL}/sessions/s1/original/my%20video.mp4?sv=2024&sig=x", "sessions/s1/original/my video.mp4"),
        ("https://captions.blob.core.windows.net/video.mp4", "video.mp4"),
        ("sessions/s1/output/captions.srt", "sessions/s1/output/captions.srt"),
        ("/sessions/s1/output/captions.srt", "sessions/s1/output/captions.srt"),
    ])
    def test_extracts_blob_name(self, value, expected):
        assert blob_name_from_url(value) == expected


class TestAzureBlobObjectStore:
    @pytest.fixture
    def container(self):
        return FakeContainerClient()

    @pytest.fixture
    def azure_store(self, container):
        return AzureBlobObjectStore(container)

    @pytest.mark.asyncio
    async def test_put_creates_container_once_and_returns_blob_url(self, azure_store, container):
        url = await azure_store.put_bytes(b"[]", "sessions/s1/transcriptions/chunk_0.json", "application/json")
        await azure_store.put_bytes(b"{}", "sessions/s1/transcriptions/chunk_1.json", "application/json")

        assert url == f"{CONTAINER_URL}/sessions/s1/transcriptions/chunk_0.json"
        assert container.created == 1
        assert container.blobs["sessions/s1/transcriptions/chunk_0.json"] == (b"[]", "application/json")

    @pytest.mark.asyncio
    async def test_blob_urls_and_names_address_the_same_object(self, azure_store, tmp_path):
        source = tmp_path / "chunk_0.mp4"
        source.write_bytes(b"video")
        url = await azure_store.put_file(str(source), "sessions/s1/chunks/chunk_0.mp4", "video/mp4")

        assert azure_store.is_store_reference(url)
        assert azure_store.is_store_reference("sessions/s1/chunks/chunk_0.mp4")
        assert not azure_store.is_store_reference("https://cdn.example.com/video.mp4")
        assert await azure_store.get_bytes(url) == b"video"
        target = tmp_path / "out" / "copy.mp4"
        await azure_store.get("sessions/s1/chunks/chunk_0.mp4", str(target))
        assert target.read_bytes() == b"video"
        assert azure_store.url_for("sessions/s1/chunks/chunk_0.mp4") == url

    @pytest.mark.asyncio
    async def test_missing_blobs(self, azure_store, tmp_path):
        with pytest.raises(ObjectNotFoundError) as exc_info:
            await azure_store.get(f"{CONTAINER_URL}/sessions/s1/original/video.mp4", str(tmp_path / "v.mp4"))
        assert exc_info.value.path == "sessions/s1/original/video.mp4"
        with pytest.raises(ObjectNotFoundError):
            await azure_store.get_bytes("sessions/s1/output/captions.srt")
        assert not await azure_store.exists("sessions/s1/original/video.mp4")

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, azure_store):
        await azure_store.put_bytes(b"x", "sessions/s1/output/captions.srt")
        await azure_store.delete("sessions/s1/output/captions.srt")
        await azure_store.delete("sessions/s1/output/captions.srt")
        assert not await azure_store.exists("sessions/s1/output/captions.srt")

    @pytest.mark.asyncio
    async def test_close(self, azure_store, container):
        await azure_store.close()
        assert container.closed


class TestBuildObjectStore:
    def test_filesystem_is_the_default(self, tmp_path):
        store = build_object_store(PipelineConfig(storage_root=str(tmp_path)))
        assert isinstance(store, FilesystemObjectStore)

    def test_azure_backend(self):
        config = PipelineConfig(
            storage_backend="azure",
            azure_storage_connection_string=(
                "DefaultEndpointsProtocol=https;AccountName=captions;"
                "AccountKey=c2VjcmV0;EndpointSuffix=core.windows.net"
            ),
        )
        store = build_object_store(config)
        assert isinstance(store, AzureBlobObjectStore)
        assert store.container_url == CONTAINER_URL

    def test_azure_backend_needs_a_connection_string(self):
        with pytest.raises(ValueError):
            build_object_store(PipelineConfig(storage_backend="azure"))

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            PipelineConfig(storage_backend="s3")
