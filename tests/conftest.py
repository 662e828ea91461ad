"""Test configuration."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from tif_service.conversion import Record
from tif_service.webapi import create_app

from .fakes import REMOVED_ID, RECORD_ID, CountingConverter, FakeConnection, FakeRecords


@pytest.fixture
def source_tif(tmp_path: Path) -> Path:
    directory = tmp_path / "sources"
    directory.mkdir()
    path = directory / "scan.tif"
    Image.new("RGB", (8, 6), (200, 40, 90)).save(path, format="TIFF")
    return path


@pytest.fixture
def records(source_tif: Path) -> FakeRecords:
    return FakeRecords(
        [
            Record(id=RECORD_ID, directory=str(source_tif.parent), file_path=source_tif.name),
            Record(id=REMOVED_ID, directory=str(source_tif.parent), file_path=source_tif.name, removed=True),
        ]
    )


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / ".cache"


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def converter() -> CountingConverter:
    return CountingConverter()


@pytest.fixture
def client(connection, records, converter, cache_dir):
    app = create_app(connection, records, converter, cache_dir=str(cache_dir))
    with TestClient(app) as c:
        yield c
