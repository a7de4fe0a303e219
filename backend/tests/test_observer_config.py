"""
Tests for observer configuration.

Tests cover:
- Timespan parsing
- ${VAR} substitution
- Building configs from manifest observer blocks
- MaintenanceObserverConfig validation and round-trip
- Registering new observer types

Run with: pytest backend/tests/test_observer_config.py -v
"""
from datetime import timedelta

import pytest


class TestParseTimespan:
    """Tests for parse_timespan."""

    @pytest.mark.parametrize("value,expected", [
        ("30s", timedelta(seconds=30)),
        ("5m", timedelta(minutes=5)),
        ("1h", timedelta(hours=1)),
        ("00:01:30", timedelta(seconds=90)),
        ("45", timedelta(seconds=45)),
        (" 2M ", timedelta(minutes=2)),
    ])
    def test_parses(self, value, expected):
        from stackgo.services.observers.config_builder import parse_timespan

        assert parse_timespan(value) == expected

    @pytest.mark.parametrize("value", [None, "", "soon", "1:2", "xm"])
    def test_unparseable_is_none(self, value):
        from stackgo.services.observers.config_builder import parse_timespan

        assert parse_timespan(value) is None


class TestResolveVariables:
    """Tests for resolve_variables."""

    def test_substitutes_case_insensitively(self):
        from stackgo.services.observers.config_builder import resolve_variables

        result = resolve_variables("http://${Api_Host}:${PORT}/status", {"API_HOST": "api", "port": "8080"})

        assert result == "http://api:8080/status"

    def test_unresolved_placeholder_returns_none(self):
        from stackgo.services.observers.config_builder import resolve_variables

        assert resolve_variables("http://${MISSING}/status", {}) is None

    def test_plain_text_and_empty(self):
        from stackgo.services.observers.config_builder import resolve_variables

        assert resolve_variables("http://status", {}) == "http://status"
        assert resolve_variables(None, {}) is None


class TestBuildConfig:
    """Tests for build_config."""

    def test_http_definition(self):
        from stackgo.models.observer import ObserverType
        from stackgo.schemas.catalog import ObserverDefinition
        from stackgo.services.observers.config_builder import build_config

        definition = ObserverDefinition(
            type="HTTP",
            polling_interval="15s",
            maintenance_value="true",
            url="http://${HOST}/maintenance",
            method="post",
            headers={"Authorization": "Bearer ${TOKEN}"},
            timeout="5s",
            json_path="$.maintenance",
        )

        config = build_config(definition, {"HOST": "status.local", "TOKEN": "abc"})

        assert config.type == ObserverType.HTTP
        assert config.polling_interval == timedelta(seconds=15)
        assert config.settings.url == "http://status.local/maintenance"
        assert config.settings.method == "POST"
        assert config.settings.headers == {"Authorization": "Bearer abc"}
        assert config.settings.timeout == timedelta(seconds=5)
        assert config.settings.json_path == "$.maintenance"

    def test_default_polling_interval(self):
        from stackgo.core.config import settings
        from stackgo.schemas.catalog import ObserverDefinition
        from stackgo.services.observers.config_builder import build_config

        config = build_config(ObserverDefinition(type="file", maintenance_value="true", path="/flags/m"))

        assert config.polling_interval == timedelta(seconds=settings.OBSERVER_DEFAULT_POLLING_INTERVAL)

    def test_bad_polling_interval_raises(self):
        from stackgo.core.exceptions import InvalidConfigurationError
        from stackgo.schemas.catalog import ObserverDefinition
        from stackgo.services.observers.config_builder import build_config

        definition = ObserverDefinition(type="file", maintenance_value="true", path="/f", polling_interval="often")

        with pytest.raises(InvalidConfigurationError):
            build_config(definition)

    def test_sql_connection_name_lookup(self):
        from stackgo.models.observer import ObserverType
        from stackgo.schemas.catalog import ObserverDefinition
        from stackgo.services.observers.config_builder import build_config

        definition = ObserverDefinition(
            type="sqlQuery",
            maintenance_value="1",
            connection_name="db_url",
            query="SELECT maintenance FROM app_state",
        )

        config = build_config(definition, {"DB_URL": "postgresql+asyncpg://app@db/app"})

        assert config.type == ObserverType.SQL_QUERY
        assert config.settings.connection_string == "postgresql+asyncpg://app@db/app"
        assert config.settings.query == "SELECT maintenance FROM app_state"

    def test_sql_without_connection_raises(self):
        from stackgo.core.exceptions import InvalidConfigurationError
        from stackgo.schemas.catalog import ObserverDefinition
        from stackgo.services.observers.config_builder import build_config

        definition = ObserverDefinition(
            type="sqlExtendedProperty", maintenance_value="1", connection_name="missing", property_name="p"
        )

        with pytest.raises(InvalidConfigurationError):
            build_config(definition, {})

    def test_unresolved_url_raises(self):
        from stackgo.core.exceptions import InvalidConfigurationError
        from stackgo.schemas.catalog import ObserverDefinition
        from stackgo.services.observers.config_builder import build_config

        definition = ObserverDefinition(type="http", maintenance_value="true", url="http://${HOST}/m")

        with pytest.raises(InvalidConfigurationError):
            build_config(definition, {})

    def test_file_content_mode(self):
        from stackgo.models.observer import FileCheckMode
        from stackgo.schemas.catalog import ObserverDefinition
        from stackgo.services.observers.config_builder import build_config

        definition = ObserverDefinition(
            type="file", maintenance_value="on", path="/status/${APP}", mode="Content",
            content_pattern=r"state=(\w+)",
        )

        config = build_config(definition, {"APP": "shop"})

        assert config.settings.path == "/status/shop"
        assert config.settings.mode == FileCheckMode.CONTENT
        assert config.settings.content_pattern == r"state=(\w+)"

    def test_unknown_type_raises(self):
        from stackgo.core.exceptions import UnsupportedObserverTypeError
        from stackgo.schemas.catalog import ObserverDefinition
        from stackgo.services.observers.config_builder import build_config

        with pytest.raises(UnsupportedObserverTypeError):
            build_config(ObserverDefinition(type="carrierPigeon", maintenance_value="yes"))


class TestMaintenanceObserverConfig:
    """Tests for MaintenanceObserverConfig.create."""

    def test_rejects_non_positive_interval(self):
        from stackgo.core.exceptions import InvalidConfigurationError
        from stackgo.models.observer import FileObserverSettings, MaintenanceObserverConfig, ObserverType

        with pytest.raises(InvalidConfigurationError):
            MaintenanceObserverConfig.create(
                type=ObserverType.FILE, polling_interval=timedelta(0), maintenance_value="true",
                settings=FileObserverSettings(path="/f"),
            )

    def test_rejects_blank_maintenance_value(self):
        from stackgo.core.exceptions import InvalidConfigurationError
        from stackgo.models.observer import FileObserverSettings, MaintenanceObserverConfig, ObserverType

        with pytest.raises(InvalidConfigurationError):
            MaintenanceObserverConfig.create(
                type=ObserverType.FILE, polling_interval=timedelta(seconds=5), maintenance_value=" ",
                settings=FileObserverSettings(path="/f"),
            )

    def test_rejects_mismatched_settings(self):
        from stackgo.core.exceptions import InvalidConfigurationError
        from stackgo.models.observer import FileObserverSettings, MaintenanceObserverConfig, ObserverType

        with pytest.raises(InvalidConfigurationError):
            MaintenanceObserverConfig.create(
                type=ObserverType.HTTP, polling_interval=timedelta(seconds=5), maintenance_value="true",
                settings=FileObserverSettings(path="/f"),
            )

    @pytest.mark.parametrize("url", ["status.local/m", "ftp://status.local/m", ""])
    def test_rejects_relative_or_non_http_url(self, url):
        from stackgo.core.exceptions import InvalidConfigurationError
        from stackgo.models.observer import HttpObserverSettings, MaintenanceObserverConfig, ObserverType

        with pytest.raises(InvalidConfigurationError):
            MaintenanceObserverConfig.create(
                type=ObserverType.HTTP, polling_interval=timedelta(seconds=5), maintenance_value="true",
                settings=HttpObserverSettings(url=url),
            )

    def test_sql_query_requires_query(self):
        from stackgo.core.exceptions import InvalidConfigurationError
        from stackgo.models.observer import MaintenanceObserverConfig, ObserverType, SqlObserverSettings

        with pytest.raises(InvalidConfigurationError):
            MaintenanceObserverConfig.create(
                type=ObserverType.SQL_QUERY, polling_interval=timedelta(seconds=5), maintenance_value="1",
                settings=SqlObserverSettings(connection_string="postgresql+asyncpg://db/app"),
            )

    def test_invalid_content_pattern(self):
        from stackgo.core.exceptions import InvalidConfigurationError
        from stackgo.models.observer import (
            FileCheckMode,
            FileObserverSettings,
            MaintenanceObserverConfig,
            ObserverType,
        )

        with pytest.raises(InvalidConfigurationError):
            MaintenanceObserverConfig.create(
                type=ObserverType.FILE, polling_interval=timedelta(seconds=5), maintenance_value="on",
                settings=FileObserverSettings(path="/f", mode=FileCheckMode.CONTENT, content_pattern="(unclosed"),
            )

    def test_round_trip(self):
        from stackgo.models.observer import MaintenanceObserverConfig, ObserverType, SqlObserverSettings

        config = MaintenanceObserverConfig.create(
            type=ObserverType.SQL_EXTENDED_PROPERTY,
            polling_interval=timedelta(minutes=1),
            maintenance_value="1",
            normal_value="0",
            settings=SqlObserverSettings(connection_string="mssql+aioodbc://db/app", property_name="app.maint"),
        )

        assert MaintenanceObserverConfig.from_dict(config.to_dict()) == config


class TestObserverTypeRegistry:
    """Tests for ObserverType.register and from_value."""

    def test_from_value_is_case_insensitive(self):
        from stackgo.models.observer import ObserverType

        assert ObserverType.from_value("SQLQUERY") is ObserverType.SQL_QUERY

    def test_register_is_idempotent(self):
        from stackgo.models.observer import ObserverType

        first = ObserverType.register("etcdKey", requires_connection=True)
        second = ObserverType.register("ETCDKEY")

        assert first is second
        assert first.requires_connection
        assert first in ObserverType.all()

    def test_unknown_value_raises(self):
        from stackgo.core.exceptions import UnsupportedObserverTypeError
        from stackgo.models.observer import ObserverType

        with pytest.raises(UnsupportedObserverTypeError):
            ObserverType.from_value("smoke-signal")
