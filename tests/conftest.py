from __future__ import annotations

import os

import pytest

import soc_scheduler.db as app_db
from soc_scheduler import models  # noqa: F401

os.environ.setdefault("BOOTSTRAP_TOKEN", "test-bootstrap-token")


@pytest.fixture(autouse=True)
def reset_database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'soc_scheduler_test.db'}")
    # Generation tests inject a fake schedule model; never reach the real API.
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("SCHEDULER_MAX_ATTEMPTS", raising=False)

    engine = app_db.configure()
    app_db.Base.metadata.create_all(bind=engine)
    yield
    app_db.Base.metadata.drop_all(bind=engine)
    engine.dispose()
