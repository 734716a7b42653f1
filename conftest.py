import pytest


@pytest.fixture(autouse=True)
def _isolated_storage(tmp_path, monkeypatch):
    """Point the sqlite db and the debug log at a per-test directory."""
    import config
    import database

    monkeypatch.setattr(config, "DB_PATH", str(tmp_path / "sniper_test.db"))
    monkeypatch.setattr(config, "LOG_PATH", str(tmp_path / "sniper_test_log.txt"))
    database.close_connection()
    yield
    database.close_connection()
