from sqlalchemy.exc import OperationalError

import src.storage.db as db_module


class _DummyConnection:
    def execute(self, _statement):
        return 1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        del exc_type, exc, tb
        return False


class _DummyEngine:
    def connect(self):
        return _DummyConnection()


class _BrokenEngine:
    def connect(self):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def test_db_connection_success(monkeypatch) -> None:
    monkeypatch.setattr(db_module, "get_engine", lambda: _DummyEngine())
    ok, error = db_module.test_connection()
    assert ok is True
    assert error is None


def test_db_connection_failure_is_reported(monkeypatch) -> None:
    monkeypatch.setattr(db_module, "get_engine", lambda: _BrokenEngine())
    ok, error = db_module.test_connection()
    assert ok is False
    assert "connection refused" in error
