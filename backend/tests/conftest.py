from __future__ import annotations

import importlib
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

FIXTURES_DIR = Path(__file__).resolve().parent / "fixtures"
REFERENCE_TZ = ZoneInfo("Asia/Kolkata")
PROVIDER_ENV_KEYS = ("OPENAI_API_KEY", "OPENROUTER_API_KEY", "ANTHROPIC_API_KEY", "MIGRAINELOG_CHAT_PROVIDER")


@pytest.fixture(autouse=True)
def no_provider_keys(monkeypatch):
    # Keep CI deterministic; provider tests set their own keys.
    for key in PROVIDER_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("MIGRAINELOG_REFERENCE_TIMEZONE", "Asia/Kolkata")


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 3, 14, 18, 30, tzinfo=REFERENCE_TZ)


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "migrainelog-test.sqlite"
    monkeypatch.setenv("MIGRAINELOG_DB_PATH", str(db_path))
    monkeypatch.setenv("ALLOW_ANON", "false")

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def client(backend_module):
    with TestClient(backend_module.app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> Callable[[str], dict[str, str]]:
    def _make(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {user_id}"}

    return _make
