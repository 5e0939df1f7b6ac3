"""Tests for domain types, errors and secret resolution."""

from datetime import date, datetime, timezone

import pytest

from dropwatch.credentials import EnvironmentSecretResolver, StaticSecretResolver
from dropwatch.domain import (
    Configuration,
    DiscoveredFile,
    DiscoveryNotification,
    Execution,
    ExecutionStatus,
    FtpSettings,
    HttpsAuthType,
    HttpsSettings,
    ObjectStorageSettings,
    OutcomeNotification,
    Protocol,
    build_idempotency_key,
    settings_from_dict,
)
from dropwatch.errors import (
    AuthenticationFailure,
    ConfigurationError,
    ConnectionTimeout,
    ErrorCategory,
    PermissionDenied,
    ProtocolError,
    SecretResolutionError,
)


class TestExecutionStatus:
    """Tests for the one-directional execution lifecycle."""

    @pytest.mark.parametrize("current, target", [
        (ExecutionStatus.PENDING, ExecutionStatus.RUNNING),
        (ExecutionStatus.PENDING, ExecutionStatus.FAILED),
        (ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED),
        (ExecutionStatus.RUNNING, ExecutionStatus.FAILED),
    ])
    def test_forward_transitions_allowed(self, current, target):
        """Test the allowed forward moves."""
        assert current.can_transition_to(target) is True

    @pytest.mark.parametrize("current, target", [
        (ExecutionStatus.RUNNING, ExecutionStatus.PENDING),
        (ExecutionStatus.COMPLETED, ExecutionStatus.RUNNING),
        (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED),
        (ExecutionStatus.FAILED, ExecutionStatus.COMPLETED),
        (ExecutionStatus.PENDING, ExecutionStatus.COMPLETED),
    ])
    def test_backward_and_skipping_transitions_rejected(self, current, target):
        """Test a terminal execution never changes and Pending cannot skip Running."""
        assert current.can_transition_to(target) is False

    def test_terminal_states(self):
        """Test which states are terminal."""
        assert ExecutionStatus.COMPLETED.is_terminal
        assert ExecutionStatus.FAILED.is_terminal
        assert not ExecutionStatus.RUNNING.is_terminal
        assert not ExecutionStatus.PENDING.is_terminal


class TestConnectionSettings:
    """Tests for protocol settings variants."""

    def test_settings_from_dict_ftp(self):
        """Test building FTP settings with defaults."""
        settings = settings_from_dict(Protocol.FTP, {"host": "ftp.example.com"})
        assert isinstance(settings, FtpSettings)
        assert settings.port == 21
        assert settings.passive_mode is True
        assert settings.location == "ftp.example.com"

    def test_settings_from_dict_https_auth_type(self):
        """Test the HTTPS auth type is parsed from its string value."""
        settings = settings_from_dict(
            Protocol.HTTPS, {"base_url": "https://x.example.com", "auth_type": "bearer"}
        )
        assert settings.auth_type is HttpsAuthType.BEARER

    def test_settings_from_dict_object_storage(self):
        """Test object storage location is endpoint plus bucket."""
        settings = settings_from_dict(
            Protocol.OBJECT_STORAGE, {"endpoint": "s3.example.com", "bucket": "drops"}
        )
        assert isinstance(settings, ObjectStorageSettings)
        assert settings.location == "s3.example.com/drops"

    def test_settings_from_dict_unknown_key(self):
        """Test keys of another protocol are rejected."""
        with pytest.raises(ConfigurationError):
            settings_from_dict(Protocol.FTP, {"base_url": "https://x.example.com"})

    def test_settings_from_dict_bad_auth_type(self):
        """Test an unknown auth type is rejected."""
        with pytest.raises(ConfigurationError):
            settings_from_dict(Protocol.HTTPS, {"base_url": "https://x", "auth_type": "oauth"})

    def test_to_dict_round_trips_auth_type(self):
        """Test to_dict stores the auth type as its string value."""
        settings = HttpsSettings(base_url="https://x", auth_type=HttpsAuthType.API_KEY)
        assert settings.to_dict()["auth_type"] == "api_key"


class TestConfiguration:
    """Tests for the Configuration dataclass."""

    def test_protocol_must_match_settings(self):
        """Test a protocol/settings mismatch is rejected."""
        with pytest.raises(ConfigurationError):
            Configuration(
                tenant_id="acme",
                protocol=Protocol.FTP,
                settings=HttpsSettings(base_url="https://x"),
                path_pattern="/",
                name_pattern="*",
                schedule_expression="0 2 * * *",
            )

    def test_name_defaults_to_id(self, make_configuration):
        """Test an unnamed configuration is labelled by its id."""
        configuration = make_configuration(name="")
        assert configuration.name == configuration.id

    def test_protocol_accepts_string(self, make_configuration):
        """Test the protocol is coerced from its value."""
        configuration = make_configuration(protocol="HTTPS")
        assert configuration.protocol is Protocol.HTTPS


class TestDiscoveries:
    """Tests for discovery identity and notifications."""

    def test_idempotency_key_format(self):
        """Test the composite identity string."""
        key = build_idempotency_key("acme", "cfg-1", "https://x/a.csv", date(2025, 1, 24))
        assert key == "acme:cfg-1:https://x/a.csv:2025-01-24"

    def test_discovery_notification_from_discovery(self):
        """Test the discovery notification carries the idempotency key."""
        discovered_at = datetime(2025, 1, 24, 2, 0, 1, tzinfo=timezone.utc)
        discovery = DiscoveredFile(
            tenant_id="acme",
            configuration_id="cfg-1",
            url="https://x/a.csv",
            discovery_date=date(2025, 1, 24),
            discovered_at=discovered_at,
            size=42,
        )
        notification = DiscoveryNotification.from_discovery(discovery)
        data = notification.to_dict()

        assert data["file_url"] == "https://x/a.csv"
        assert data["size"] == 42
        assert data["last_modified_remote"] is None
        assert data["discovered_at"] == discovered_at.isoformat()
        assert data["idempotency_key"] == discovery.idempotency_key

    def test_outcome_notification_includes_category_only_on_failure(self):
        """Test error_category is only present for failed executions."""
        execution = Execution(
            configuration_id="cfg-1",
            tenant_id="acme",
            scheduled_for=datetime(2025, 1, 24, tzinfo=timezone.utc),
            status=ExecutionStatus.COMPLETED,
            files_found=2,
        )
        assert "error_category" not in OutcomeNotification.from_execution(execution).to_dict()

        execution.status = ExecutionStatus.FAILED
        execution.error_category = ErrorCategory.CONNECTION_TIMEOUT
        execution.error_detail = "Adapter call timed out after 30s"
        data = OutcomeNotification.from_execution(execution).to_dict()
        assert data["status"] == "Failed"
        assert data["files_found"] == 2
        assert data["error_category"] == "ConnectionTimeout"
        assert data["error_detail"] == "Adapter call timed out after 30s"

    def test_outcome_notification_identifies_execution(self):
        """Test outcomes carry the execution id and a per-execution idempotency key."""
        execution = Execution(
            configuration_id="cfg-1",
            tenant_id="acme",
            scheduled_for=datetime(2025, 1, 24, 2, tzinfo=timezone.utc),
            status=ExecutionStatus.COMPLETED,
            files_found=1,
            duration_ms=1250,
            resolved_path="/files/2025/01/24",
            resolved_name="data_20250124.csv",
            id="exec-1",
        )

        notification = OutcomeNotification.from_execution(execution)
        data = notification.to_dict()

        assert notification.idempotency_key == "acme:cfg-1:completed:exec-1"
        assert data["execution_id"] == "exec-1"
        assert data["tenant_id"] == "acme"
        assert data["idempotency_key"] == "acme:cfg-1:completed:exec-1"
        assert data["duration_ms"] == 1250
        assert data["resolved_path"] == "/files/2025/01/24"
        assert data["resolved_name"] == "data_20250124.csv"


class TestAdapterErrors:
    """Tests for the adapter error taxonomy."""

    @pytest.mark.parametrize("error_type, category", [
        (AuthenticationFailure, ErrorCategory.AUTHENTICATION_FAILURE),
        (ConnectionTimeout, ErrorCategory.CONNECTION_TIMEOUT),
        (ProtocolError, ErrorCategory.PROTOCOL_ERROR),
        (PermissionDenied, ErrorCategory.PERMISSION_DENIED),
    ])
    def test_categories(self, error_type, category):
        """Test each error type carries its category."""
        assert error_type("boom").category is category

    def test_str_includes_detail(self):
        """Test the detail is appended to the message."""
        assert str(ProtocolError("Listing failed", "502")) == "Listing failed (502)"
        assert str(ProtocolError("Listing failed")) == "Listing failed"


class TestSecretResolvers:
    """Tests for secret resolution."""

    def test_environment_variable_name(self):
        """Test reference to variable name mapping."""
        resolver = EnvironmentSecretResolver(environ={})
        assert resolver.variable_name("partner-a/ftp-password") == "DROPWATCH_SECRET_PARTNER_A_FTP_PASSWORD"

    def test_environment_resolve(self):
        """Test resolving from the given environment."""
        resolver = EnvironmentSecretResolver(environ={"DROPWATCH_SECRET_TOKEN": "s3cr3t"})
        assert resolver.resolve("token") == "s3cr3t"

    def test_environment_missing(self):
        """Test a missing secret raises SecretResolutionError."""
        resolver = EnvironmentSecretResolver(environ={})
        with pytest.raises(SecretResolutionError) as exc_info:
            resolver.resolve("missing")
        assert exc_info.value.reference == "missing"

    def test_custom_prefix(self):
        """Test a custom environment prefix."""
        resolver = EnvironmentSecretResolver(prefix="APP_", environ={"APP_KEY": "v"})
        assert resolver.resolve("key") == "v"

    def test_static_resolver(self):
        """Test the in-memory resolver."""
        resolver = StaticSecretResolver({"a": "1"})
        resolver.set("b", "2")
        assert resolver.resolve("a") == "1"
        assert resolver.resolve("b") == "2"
        with pytest.raises(SecretResolutionError):
            resolver.resolve("c")

    def test_resolve_optional(self):
        """Test empty references resolve to None."""
        resolver = StaticSecretResolver()
        assert resolver.resolve_optional(None) is None
        assert resolver.resolve_optional("") is None
