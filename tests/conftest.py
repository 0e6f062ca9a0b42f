"""Shared test setup: isolated directories and a small file size limit."""
import shutil
from pathlib import Path

import pytest
import pytest_asyncio

import config

TEST_ROOT = Path("test_data").absolute()
TEST_MAX_FILE_SIZE = 64 * 1024  # 64KB

# Override config before any module builds its logger or storage manager
config.LOG_DIR = str(TEST_ROOT / "logs")
config.UPLOAD_DIR = str(TEST_ROOT / "uploads")
config.MAX_FILE_SIZE = TEST_MAX_FILE_SIZE

from app.services.storage_manager import StorageManager  # noqa: E402


@pytest.fixture
def upload_dir(tmp_path) -> Path:
    return tmp_path / "uploads"


@pytest_asyncio.fixture
async def storage_manager(upload_dir):
    manager = StorageManager(upload_dir)
    await manager.initialize()
    yield manager


@pytest.fixture(scope="session", autouse=True)
def cleanup_test_root():
    yield
    shutil.rmtree(TEST_ROOT, ignore_errors=True)
