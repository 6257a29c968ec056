# vehicle_backup/config/config_models.py
"""
Configuration management for the vehicle backup poller.

This module provides Pydantic models for the optional YAML configuration
file that tunes how the poller talks to the MyGeotab backend, how often it
polls, where snapshots are written, and how logging is emitted.

Design Decisions:
-----------------
- All models use `extra='forbid'` to catch typos and invalid fields in YAML
  configuration files early, preventing silent misconfiguration.

- Every field has a default. The command line already carries the backend
  host, database and credentials, so a configuration file is only needed to
  override operational settings. `BackupConfig()` is a valid configuration.

- No logging occurs within this module because the logging configuration itself
  is defined here. Logging must be configured by the caller after loading config.

- SSL verification supports three modes to handle corporate proxy environments:
  1. `True` - Standard verification using system CA bundle
  2. `False` - Disabled verification (use with caution, required for some proxies)
  3. String path - Custom CA bundle (e.g., exported Zscaler root certificate)

Usage:
------
    import yaml
    from vehicle_backup.config.config_models import BackupConfig

    with open('vehicle_backup.yaml', 'r') as config_file:
        raw_config = yaml.safe_load(config_file)

    config = BackupConfig.model_validate(raw_config)
"""

from pathlib import Path
from typing import Literal, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

# =============================================================================
# Public API
# =============================================================================

__all__: list[str] = [
    'BackupConfig',
    'ConnectionConfig',
    'LogLevelName',
    'LoggingConfig',
    'PollingConfig',
    'StorageConfig',
]

# =============================================================================
# Type Aliases
# =============================================================================

# Valid logging level names recognized by Python's logging module.
LogLevelName = Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

# Numeric equivalents of log level names for validation purposes.
LOG_LEVEL_VALUES: frozenset[int] = frozenset({10, 20, 30, 40, 50})

# Mapping from level name to numeric value, avoiding import of logging module
# in the model layer to maintain separation of concerns.
LOG_LEVEL_NAME_TO_INT: dict[LogLevelName, int] = {
    'DEBUG': 10,
    'INFO': 20,
    'WARNING': 30,
    'ERROR': 40,
    'CRITICAL': 50,
}


# =============================================================================
# Backend Connection Configuration
# =============================================================================


class ConnectionConfig(BaseModel):
    """Transport settings for the MyGeotab JSON-RPC session.

    Network Resilience:
        Transport-level failures (connection refused, timeouts) are retried
        inside a single request up to `max_retries` attempts with exponential
        backoff. Anything still failing after that is reported to the poll
        loop as a transient error and retried on the next cycle.

    Attributes:
        request_timeout: Connection and read timeout as [connect, read] seconds.
        max_retries: Total attempts per request for transport failures (1-10).
        verify_ssl: SSL certificate verification mode. False disables (insecure),
            True uses system CA store, or provide path to custom CA bundle.
        use_truststore: When True, build the SSLContext from the operating
            system trust store via the `truststore` library.
    """

    model_config = ConfigDict(extra='forbid')

    request_timeout: tuple[int, int] = Field(
        default=(10, 60),
        description='[connect_timeout, read_timeout] in seconds; both must be positive',
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description='Total attempts per request on transport failures (1-10)',
    )
    verify_ssl: bool | str = Field(
        default=True,
        description='False to disable SSL, True for system CA, or path to CA bundle',
    )
    use_truststore: bool = Field(
        default=False,
        description='Use truststore library for operating system CA certificates',
    )

    @field_validator('request_timeout')
    @classmethod
    def validate_timeout_values_positive(
        cls, timeout: tuple[int, int]
    ) -> tuple[int, int]:
        """Ensure both timeout values are positive integers.

        Args:
            timeout: Tuple of [connect_timeout, read_timeout] in seconds.

        Returns:
            The validated timeout tuple.

        Raises:
            ValueError: If either timeout value is non-positive.
        """
        connect_timeout, read_timeout = timeout

        if connect_timeout <= 0:
            raise ValueError(
                f'connect_timeout must be positive, got: {connect_timeout}'
            )
        if read_timeout <= 0:
            raise ValueError(f'read_timeout must be positive, got: {read_timeout}')

        return timeout

    @field_validator('verify_ssl')
    @classmethod
    def validate_ssl_configuration(cls, verify_ssl: bool | str) -> bool | str:
        """Validate that a custom CA bundle path points at an existing file.

        Args:
            verify_ssl: Boolean or path to CA certificate bundle file.

        Returns:
            The validated SSL configuration.

        Raises:
            ValueError: If string path does not exist or is not a file.
        """
        if isinstance(verify_ssl, str):
            cert_path = Path(verify_ssl)

            if not cert_path.exists():
                raise ValueError(f'SSL certificate bundle file not found: {verify_ssl}')
            if not cert_path.is_file():
                raise ValueError(
                    f'SSL certificate path must be a file, not directory: {verify_ssl}'
                )

        return verify_ssl


# =============================================================================
# Polling Configuration
# =============================================================================


class PollingConfig(BaseModel):
    """Timing of the poll loop.

    Attributes:
        interval_seconds: Delay between the end of one cycle and the start of
            the next. Also used as the wait after a transient backend error.
        rate_limit_backoff_seconds: Delay after the backend reports that the
            query limit was exceeded. Must not be shorter than the interval.
    """

    model_config = ConfigDict(extra='forbid')

    interval_seconds: float = Field(
        default=10.0,
        ge=0.0,
        le=3600.0,
        description='Seconds to wait between poll cycles',
    )
    rate_limit_backoff_seconds: float = Field(
        default=60.0,
        ge=0.0,
        le=3600.0,
        description='Seconds to back off after a rate-limit error',
    )

    @model_validator(mode='after')
    def validate_backoff_not_shorter_than_interval(self) -> Self:
        """Reject a rate-limit backoff shorter than the normal interval.

        Raises:
            ValueError: If rate_limit_backoff_seconds < interval_seconds.
        """
        if self.rate_limit_backoff_seconds < self.interval_seconds:
            raise ValueError(
                'rate_limit_backoff_seconds must be >= interval_seconds, got: '
                f'{self.rate_limit_backoff_seconds} < {self.interval_seconds}'
            )
        return self


# =============================================================================
# Storage Configuration
# =============================================================================


class StorageConfig(BaseModel):
    """Where and how snapshot files are written.

    Attributes:
        output_directory: Directory holding one `<vehicle id>.csv` file per
            vehicle. Relative paths resolve from the working directory.
        max_concurrent_writes: Upper bound on snapshot files written at the
            same time within one cycle.
    """

    model_config = ConfigDict(extra='forbid')

    output_directory: Path = Field(
        default=Path('VehiclesBackup'),
        description='Directory for per-vehicle append-only CSV files',
    )
    max_concurrent_writes: int = Field(
        default=16,
        ge=1,
        le=256,
        description='Maximum number of snapshot files written concurrently',
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Configuration for application logging output.

    Supports dual-destination logging: console (always enabled, stdout) and
    optional file output.

    Attributes:
        file_path: Path to log file. None disables file logging.
            Extension .log is appended automatically if missing.
        console_level: Minimum log level for console output.
            Accepts level name or numeric value.
        file_level: Minimum log level for file output. Defaults to DEBUG
            if file_path is provided.
    """

    model_config = ConfigDict(extra='forbid')

    file_path: Path | None = Field(
        default=None,
        description='Log file path (.log extension auto-added). None disables file logging.',
    )
    console_level: LogLevelName | int = Field(
        default='INFO',
        description="Console log level: 'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL', or int",
    )
    file_level: LogLevelName | int | None = Field(
        default=None,
        description='File log level. None disables file logging.',
    )

    @field_validator('file_path', mode='before')
    @classmethod
    def normalize_log_file_path(cls, path_value: str | Path | None) -> Path | None:
        """Normalize path and ensure .log extension."""
        if path_value is None:
            return None

        path_string: str = str(path_value)

        if not path_string.lower().endswith('.log'):
            path_string = f'{path_string}.log'

        return Path(path_string)

    @field_validator('console_level', 'file_level', mode='after')
    @classmethod
    def validate_numeric_log_level(
        cls, level_value: LogLevelName | int | None
    ) -> LogLevelName | int | None:
        """Validate numeric log levels are standard Python logging values.

        Raises:
            ValueError: If numeric level is not a standard logging value.
        """
        if level_value is None or isinstance(level_value, str):
            return level_value

        if level_value not in LOG_LEVEL_VALUES:
            raise ValueError(
                f'Numeric log level must be one of {sorted(LOG_LEVEL_VALUES)}, '
                f'got: {level_value}'
            )

        return level_value

    @model_validator(mode='after')
    def ensure_file_logging_configuration_consistency(self) -> Self:
        """Ensure file_path and file_level are consistently configured.

        If file_path is provided without file_level, defaults to DEBUG.

        Raises:
            ValueError: If file_level is set but file_path is missing.
        """
        has_file_path: bool = self.file_path is not None
        has_file_level: bool = self.file_level is not None

        if has_file_path and not has_file_level:
            self.file_level = 'DEBUG'

        if has_file_level and not has_file_path:
            raise ValueError(
                'file_level is specified but file_path is missing. '
                'Provide file_path to enable file logging, or remove file_level.'
            )

        return self

    def get_console_level_int(self) -> int:
        """Convert console_level to numeric value for logging module."""
        if isinstance(self.console_level, int):
            return self.console_level
        return LOG_LEVEL_NAME_TO_INT[self.console_level]

    def get_file_level_int(self) -> int | None:
        """Convert file_level to numeric value, or None if file logging is off."""
        if self.file_level is None:
            return None
        if isinstance(self.file_level, int):
            return self.file_level
        return LOG_LEVEL_NAME_TO_INT[self.file_level]


# =============================================================================
# Root Configuration
# =============================================================================


class BackupConfig(BaseModel):
    """Root configuration model for the vehicle backup poller.

    Aggregates all configuration sections. Each section is optional in the
    YAML file and falls back to its defaults.

    Loading Example:
    ```python
        import yaml
        from pathlib import Path

        config_path = Path('vehicle_backup.yaml')
        with config_path.open('r', encoding='utf-8') as config_file:
            raw_config = yaml.safe_load(config_file)

        config = BackupConfig.model_validate(raw_config)
    ```

    Attributes:
        connection: MyGeotab transport settings.
        polling: Poll loop timing.
        storage: Snapshot file output settings.
        logging: Application logging configuration.
    """

    model_config = ConfigDict(extra='forbid')

    connection: ConnectionConfig = Field(
        default_factory=ConnectionConfig,
        description='Backend transport settings (timeouts, retries, SSL)',
    )
    polling: PollingConfig = Field(
        default_factory=PollingConfig,
        description='Poll loop timing',
    )
    storage: StorageConfig = Field(
        default_factory=StorageConfig,
        description='Snapshot file output settings',
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description='Application logging configuration',
    )
