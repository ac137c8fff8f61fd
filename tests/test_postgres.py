from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.config import DatabaseSettings
from app.infrastructure.postgres import DatabaseConnectionError, Postgres, create_pool


def _settings(**overrides):
    values = dict(host="db", database="app", username="svc", password="pw", max_conns=4, min_conns=2)
    values.update(overrides)
    return DatabaseSettings(**values)


def test_create_pool_bounds_connections():
    with patch("app.infrastructure.postgres.create_engine") as mock_create:
        create_pool(_settings(ssl_mode="require", connect_timeout=3))

    url = mock_create.call_args.args[0]
    kwargs = mock_create.call_args.kwargs
    assert url == "postgresql+psycopg://svc:pw@db:5432/app"
    assert kwargs["pool_size"] == 4
    assert kwargs["max_overflow"] == 0
    assert kwargs["pool_pre_ping"] is True
    assert kwargs["connect_args"] == {"sslmode": "require", "connect_timeout": 3}


@pytest.mark.parametrize("timeout,expected", [(0.5, 1), (2.2, 3), (10, 10)])
def test_connect_timeout_rounds_up_to_whole_seconds(timeout, expected):
    with patch("app.infrastructure.postgres.create_engine") as mock_create:
        create_pool(_settings(connect_timeout=timeout))

    assert mock_create.call_args.kwargs["connect_args"]["connect_timeout"] == expected


def test_connect_warms_min_conns_and_pings():
    engine = MagicMock()
    pg = Postgres.connect(_settings(), engine=engine)

    assert pg.engine is engine
    # two warm-up connections plus one for the ping
    assert engine.connect.call_count == 3
    engine.dispose.assert_not_called()


def test_connect_failure_disposes_and_wraps():
    engine = MagicMock()
    engine.connect.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))

    with pytest.raises(DatabaseConnectionError) as exc:
        Postgres.connect(_settings(), engine=engine)

    assert isinstance(exc.value.__cause__, OperationalError)
    engine.dispose.assert_called_once()


def test_ping_propagates_driver_error_unchanged():
    engine = MagicMock()
    driver_error = OperationalError("SELECT 1", {}, Exception("gone"))
    engine.connect.return_value.__enter__.return_value.execute.side_effect = driver_error

    with pytest.raises(OperationalError) as exc:
        Postgres(engine).ping()
    assert exc.value is driver_error


def test_close_disposes_pool():
    engine = MagicMock()
    Postgres(engine).close()
    engine.dispose.assert_called_once()
