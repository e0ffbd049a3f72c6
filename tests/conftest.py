"""Shared fixtures for the storage and API tests."""

import json
from pathlib import Path

import pytest

from gigboard import create_app
from gigboard.repositories import Repositories


class FakeClock:
    """Monotonic clock the tests can move forward by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repos(data_dir, clock):
    return Repositories(data_dir, index_ttl=30.0, notification_cap=100, clock=clock)


@pytest.fixture
def app(data_dir):
    app = create_app({"TESTING": True, "DATA_DIR": str(data_dir), "LOG_LEVEL": "WARNING"})
    yield app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


def write_legacy(data_dir: Path, entity_type: str, entity_id, filename: str, document: dict) -> Path:
    """Place a document in the flat pre-sharding layout."""
    directory = data_dir / entity_type / str(entity_id)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


def snapshot(root: Path) -> dict:
    """Relative path -> file content for every file under ``root``."""
    return {
        str(path.relative_to(root)): path.read_text(encoding="utf-8")
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }
