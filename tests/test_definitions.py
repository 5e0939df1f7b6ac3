"""Tests for YAML configuration definitions."""

from datetime import datetime, timezone

import pytest

from dropwatch.definitions import (
    configuration_from_definition,
    load_definitions,
    merge_with_existing,
    parse_protocol,
)
from dropwatch.domain import FtpSettings, HttpsAuthType, Protocol
from dropwatch.errors import ConfigurationError

DEFINITIONS_YAML = """
configurations:
  - id: acme-sales
    tenant_id: acme
    name: Daily sales export
    protocol: https
    settings:
      base_url: https://files.example.com
      auth_type: bearer
      secret_ref: acme-files-token
    path_pattern: /exports/{yyyy}/{mm}
    name_pattern: sales_{yyyymmdd}.csv
    file_extension: .csv
    schedule:
      cron: "0 2 * * *"
      timezone: Europe/Berlin
  - tenant_id: globex
    name: Partner drop
    protocol: FTPS
    settings:
      host: ftp.globex.example
      username: dropwatch
      password_ref: globex-ftp
    path_pattern: /outgoing
    name_pattern: "*.zip"
    active: false
    schedule:
      cron: "30 6 * * 1-5"
"""


def definition(**overrides):
    data = {
        "tenant_id": "acme",
        "name": "Daily export",
        "protocol": "HTTPS",
        "settings": {"base_url": "https://files.example.com"},
        "path_pattern": "/files/{yyyy}/{mm}/{dd}",
        "name_pattern": "data_{yyyymmdd}.csv",
        "schedule": {"cron": "0 2 * * *", "timezone": "UTC"},
    }
    data.update(overrides)
    return data


class TestParseProtocol:
    """Tests for parse_protocol()."""

    @pytest.mark.parametrize("value, expected", [
        ("FTP", Protocol.FTP),
        ("ftps", Protocol.FTP),
        ("Https", Protocol.HTTPS),
        ("ObjectStorage", Protocol.OBJECT_STORAGE),
        ("s3", Protocol.OBJECT_STORAGE),
    ])
    def test_aliases(self, value, expected):
        """Test protocol names are parsed case-insensitively."""
        assert parse_protocol(value) is expected

    def test_unsupported(self):
        """Test an unknown protocol names the supported ones."""
        with pytest.raises(ConfigurationError, match="Unsupported protocol 'sftp'"):
            parse_protocol("sftp")


class TestConfigurationFromDefinition:
    """Tests for configuration_from_definition()."""

    def test_valid_definition(self):
        """Test a complete definition builds an active configuration."""
        configuration = configuration_from_definition(definition())

        assert configuration.tenant_id == "acme"
        assert configuration.protocol is Protocol.HTTPS
        assert configuration.schedule_expression == "0 2 * * *"
        assert configuration.is_active is True
        assert configuration.next_due_at is None

    @pytest.mark.parametrize("missing", ["tenant_id", "name", "protocol", "path_pattern", "name_pattern"])
    def test_required_fields(self, missing):
        """Test each required field is enforced."""
        data = definition()
        del data[missing]

        with pytest.raises(ConfigurationError, match=missing):
            configuration_from_definition(data)

    def test_name_too_long(self):
        """Test the name length limit."""
        with pytest.raises(ConfigurationError, match="200"):
            configuration_from_definition(definition(name="x" * 201))

    def test_missing_settings(self):
        """Test settings must be a non-empty mapping."""
        with pytest.raises(ConfigurationError, match="settings"):
            configuration_from_definition(definition(settings={}))

    def test_tokens_in_host_rejected(self):
        """Test a tokenized host is refused."""
        data = definition(settings={"base_url": "https://files-{yyyy}.example.com"})

        with pytest.raises(ConfigurationError, match="host"):
            configuration_from_definition(data)

    def test_unknown_token_rejected(self):
        """Test unrecognised tokens in patterns are refused."""
        with pytest.raises(ConfigurationError, match="{region}"):
            configuration_from_definition(definition(path_pattern="/{region}/{yyyy}"))

    def test_invalid_cron(self):
        """Test a malformed cron expression is refused."""
        with pytest.raises(ConfigurationError, match="cron"):
            configuration_from_definition(definition(schedule={"cron": "not a cron"}))

    def test_missing_cron(self):
        """Test the schedule needs a cron expression."""
        with pytest.raises(ConfigurationError, match="schedule.cron"):
            configuration_from_definition(definition(schedule={"timezone": "UTC"}))

    def test_unknown_timezone(self):
        """Test an unknown IANA zone is refused."""
        with pytest.raises(ConfigurationError, match="timezone"):
            configuration_from_definition(
                definition(schedule={"cron": "0 2 * * *", "timezone": "Mars/Olympus"})
            )

    def test_file_extension(self):
        """Test the extension is stored without its dot and validated."""
        assert configuration_from_definition(definition(file_extension=".csv")).file_extension == "csv"

        with pytest.raises(ConfigurationError, match="file_extension"):
            configuration_from_definition(definition(file_extension="tar.gz"))

    def test_not_a_mapping(self):
        """Test a definition must be a mapping."""
        with pytest.raises(ConfigurationError):
            configuration_from_definition(["not", "a", "mapping"])


class TestLoadDefinitions:
    """Tests for load_definitions()."""

    def test_load_file(self, tmp_path):
        """Test every entry in a definitions file is loaded."""
        path = tmp_path / "definitions.yaml"
        path.write_text(DEFINITIONS_YAML)

        configurations = load_definitions(path)

        assert len(configurations) == 2
        sales, partner = configurations
        assert sales.id == "acme-sales"
        assert sales.timezone == "Europe/Berlin"
        assert sales.settings.auth_type is HttpsAuthType.BEARER
        assert sales.file_extension == "csv"
        assert isinstance(partner.settings, FtpSettings)
        assert partner.timezone == "UTC"
        assert partner.is_active is False

    def test_top_level_list(self, tmp_path):
        """Test a bare list of definitions is accepted."""
        path = tmp_path / "definitions.yaml"
        path.write_text(
            "- tenant_id: acme\n"
            "  name: Export\n"
            "  protocol: HTTPS\n"
            "  settings: {base_url: 'https://x.example.com'}\n"
            "  path_pattern: /files\n"
            "  name_pattern: '*.csv'\n"
            "  schedule: {cron: '@daily'}\n"
        )

        assert len(load_definitions(path)) == 1

    def test_error_names_entry(self, tmp_path):
        """Test a bad entry is reported by name."""
        path = tmp_path / "definitions.yaml"
        path.write_text(DEFINITIONS_YAML.replace('"30 6 * * 1-5"', '"99 * * * *"'))

        with pytest.raises(ConfigurationError, match="Partner drop"):
            load_definitions(path)

    def test_missing_file(self, tmp_path):
        """Test an unreadable file is a ConfigurationError."""
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_definitions(tmp_path / "missing.yaml")

    def test_no_configurations_key(self, tmp_path):
        """Test a document without configurations is refused."""
        path = tmp_path / "definitions.yaml"
        path.write_text("settings: {}\n")

        with pytest.raises(ConfigurationError, match="configurations"):
            load_definitions(path)


class TestMergeWithExisting:
    """Tests for merge_with_existing()."""

    def test_new_configuration(self, make_configuration):
        """Test nothing is carried over without a stored configuration."""
        incoming = make_configuration()
        assert merge_with_existing(incoming, None) is incoming

    def test_unchanged_schedule_keeps_next_due(self, make_configuration):
        """Test schedule progress survives a re-import."""
        due = datetime(2025, 1, 25, 2, 0, tzinfo=timezone.utc)
        evaluated = datetime(2025, 1, 24, 2, 0, 1, tzinfo=timezone.utc)
        existing = make_configuration(next_due_at=due, last_evaluated_at=evaluated)
        incoming = make_configuration(id=existing.id)

        merged = merge_with_existing(incoming, existing)

        assert merged.next_due_at == due
        assert merged.last_evaluated_at == evaluated
        assert merged.created_at == existing.created_at

    def test_changed_schedule_resets_next_due(self, make_configuration):
        """Test a new cron expression clears next_due_at."""
        existing = make_configuration(next_due_at=datetime(2025, 1, 25, 2, 0, tzinfo=timezone.utc))
        incoming = make_configuration(id=existing.id, schedule_expression="0 3 * * *")

        assert merge_with_existing(incoming, existing).next_due_at is None
