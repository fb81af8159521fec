import importlib

import pytest

from swipr_rec import config


@pytest.fixture(autouse=True)
def restore_config(monkeypatch):
    yield
    monkeypatch.undo()
    importlib.reload(config)


def test_env_overrides_and_validation(monkeypatch):
    monkeypatch.setenv("SWIPR_SIMILARITY_TTL", "60")
    monkeypatch.setenv("SWIPR_HTTP_TIMEOUT", "0.1")  # should clamp to min
    monkeypatch.setenv("SWIPR_MAX_PAGE_RETRIES", "-2")  # min clamp

    cfg = importlib.reload(config)

    assert cfg.SIMILARITY_CACHE_TTL == 60.0
    assert cfg.HTTP_TIMEOUT == 1.0
    assert cfg.MAX_PAGE_RETRIES == 0


def test_db_path_respects_env(monkeypatch, tmp_path):
    db_path = tmp_path / "custom.db"
    monkeypatch.setenv("SWIPR_DB", str(db_path))

    cfg = importlib.reload(config)

    assert cfg.DB_PATH == db_path


def test_invalid_env_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("SWIPR_SIMILARITY_TTL", "not-a-float")
    monkeypatch.setenv("SWIPR_QUEUE_LOW_WATERMARK", "bad-int")

    cfg = importlib.reload(config)

    assert cfg.SIMILARITY_CACHE_TTL == 300.0
    assert cfg.QUEUE_LOW_WATERMARK == 5


def test_hybrid_weights_sum_to_one():
    assert sum(config.HYBRID_WEIGHTS.values()) == pytest.approx(1.0)
