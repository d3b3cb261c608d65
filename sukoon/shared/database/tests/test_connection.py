"""Tests for database connection management."""
import json
import pytest
from unittest.mock import MagicMock, patch

from sukoon.shared.database.connection import ConnectionManager, DatabaseConfig


class TestDatabaseConfig:
    """Tests for DatabaseConfig."""

    def test_defaults(self):
        config = DatabaseConfig(host="localhost")

        assert config.port == 5432
        assert config.database == "sukoon"
        assert config.ssl_mode == "require"
        assert config.max_connections == 10

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DB_HOST", "db.internal")
        monkeypatch.setenv("DB_PORT", "6543")
        monkeypatch.setenv("DB_NAME", "risk")
        monkeypatch.setenv("DB_MAX_CONN", "20")

        config = DatabaseConfig.from_env()

        assert config.host == "db.internal"
        assert config.port == 6543
        assert config.database == "risk"
        assert config.max_connections == 20

    @patch("boto3.client")
    def test_from_secrets_manager(self, mock_boto_client):
        mock_boto_client.return_value.get_secret_value.return_value = {
            "SecretString": json.dumps({
                "host": "rds.example.com",
                "port": 5433,
                "dbname": "sukoon_prod",
                "username": "triage",
                "password": "secret",
            })
        }

        config = DatabaseConfig.from_secrets_manager("arn:aws:secretsmanager:x", region="eu-west-1")

        mock_boto_client.assert_called_once_with("secretsmanager", region_name="eu-west-1")
        assert config.host == "rds.example.com"
        assert config.port == 5433
        assert config.database == "sukoon_prod"
        assert config.username == "triage"

    @patch("boto3.client")
    def test_from_secrets_manager_failure_propagates(self, mock_boto_client):
        mock_boto_client.return_value.get_secret_value.side_effect = Exception("AccessDenied")

        with pytest.raises(Exception, match="AccessDenied"):
            DatabaseConfig.from_secrets_manager("arn:aws:secretsmanager:x")


class TestConnectionManager:
    """Tests for ConnectionManager."""

    @pytest.fixture
    def manager(self):
        return ConnectionManager(DatabaseConfig(host="localhost", username="u", password="p"))

    def test_health_check_before_init(self, manager):
        result = manager.health_check()

        assert result["healthy"] is False
        assert result["status"] == "not_initialized"

    @patch("psycopg2.pool.ThreadedConnectionPool")
    def test_initialize_creates_threaded_pool(self, mock_pool_cls, manager):
        manager.initialize()
        manager.initialize()

        mock_pool_cls.assert_called_once()
        kwargs = mock_pool_cls.call_args.kwargs
        assert kwargs["host"] == "localhost"
        assert kwargs["database"] == "sukoon"
        assert kwargs["sslmode"] == "require"

    @patch("psycopg2.pool.ThreadedConnectionPool")
    def test_get_connection_returns_conn_to_pool(self, mock_pool_cls, manager):
        pool = mock_pool_cls.return_value
        conn = MagicMock()
        pool.getconn.return_value = conn

        with manager.get_connection() as c:
            assert c is conn

        pool.putconn.assert_called_once_with(conn)
        conn.rollback.assert_not_called()

    @patch("psycopg2.pool.ThreadedConnectionPool")
    def test_get_connection_rolls_back_on_error(self, mock_pool_cls, manager):
        pool = mock_pool_cls.return_value
        conn = MagicMock()
        pool.getconn.return_value = conn

        with pytest.raises(RuntimeError):
            with manager.get_connection():
                raise RuntimeError("boom")

        conn.rollback.assert_called_once()
        pool.putconn.assert_called_once_with(conn)

    @patch("psycopg2.pool.ThreadedConnectionPool")
    def test_health_check_connected(self, mock_pool_cls, manager):
        manager.initialize()

        result = manager.health_check()

        assert result["healthy"] is True
        assert result["status"] == "connected"

    @patch("psycopg2.pool.ThreadedConnectionPool")
    def test_health_check_reports_errors(self, mock_pool_cls, manager):
        mock_pool_cls.return_value.getconn.side_effect = Exception("connection refused")
        manager.initialize()

        result = manager.health_check()

        assert result["healthy"] is False
        assert "connection refused" in result["error"]

    @patch("psycopg2.pool.ThreadedConnectionPool")
    def test_close(self, mock_pool_cls, manager):
        manager.initialize()

        manager.close()

        mock_pool_cls.return_value.closeall.assert_called_once()
        assert manager.health_check()["status"] == "not_initialized"
