# vehicle_backup/cli.py
"""
Command line entry point.

    vehicle-backup SERVER DATABASE USERNAME PASSWORD

Authenticates against MyGeotab, then appends a snapshot per vehicle to
`VehiclesBackup/<vehicle id>.csv` every 10 seconds until the operator
presses Enter (or sends SIGINT/SIGTERM). Operational settings can be
overridden with a YAML file named by the VEHICLE_BACKUP_CONFIG environment
variable.

Any other number of arguments prints the usage text and exits with 0.
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from typing import Final, TextIO

import yaml

from vehicle_backup.cancellation import (
    CancellationToken,
    FirstCompleted,
    OperatorInterruptListener,
    install_signal_handlers,
    race_until_first_completes,
)
from vehicle_backup.client import AuthenticationError, ErrorKind, GeotabSession
from vehicle_backup.common import SnapshotWriter, setup_logger
from vehicle_backup.config import CONFIG_PATH_ENV_VAR, BackupConfig, resolve_config
from vehicle_backup.pipeline import PollCycleRunner

__all__: list[str] = ['build_arg_parser', 'main', 'run_backup']

logger: logging.Logger = logging.getLogger(__name__)

EXPECTED_ARGUMENT_COUNT: Final[int] = 4

AUTHENTICATION_FAILURE_LABELS: Final[dict[ErrorKind, str]] = {
    ErrorKind.INVALID_CREDENTIALS: 'Invalid user',
    ErrorKind.BACKEND_UNAVAILABLE: 'Database unavailable',
    ErrorKind.RATE_LIMITED: 'User has exceeded the query limit',
}
DEFAULT_AUTHENTICATION_FAILURE_LABEL: Final[str] = 'Failed to authenticate user'


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='vehicle-backup',
        description=(
            'Poll MyGeotab for every vehicle and append its position and '
            'odometer to VehiclesBackup/<vehicle id>.csv.'
        ),
        epilog=(
            'Example: vehicle-backup my.geotab.com G560 user@example.com secret\n\n'
            f'Set {CONFIG_PATH_ENV_VAR} to a YAML file to override polling, '
            'storage, connection and logging settings.'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('server', help='server host name (example: my.geotab.com)')
    parser.add_argument('database', help='database name (example: G560)')
    parser.add_argument('username', help='MyGeotab user name')
    parser.add_argument('password', help='MyGeotab password')
    return parser


def _log_authentication_failure(label: str, error: Exception) -> None:
    logger.error('%s: %s', label, error)
    logger.error('Could not authenticate. End of program.')


async def run_backup(
    server: str,
    database: str,
    username: str,
    password: str,
    config: BackupConfig,
    input_stream: TextIO | None = None,
) -> FirstCompleted | None:
    """
    Authenticate and run the poll loop until the operator or the loop ends it.

    Args:
        server: MyGeotab host.
        database: Database name.
        username: User name.
        password: Password.
        config: Operational configuration.
        input_stream: Stream the operator presses Enter on; defaults to stdin.

    Returns:
        Which side ended the run, or None if authentication failed.
    """
    try:
        session = GeotabSession(
            server,
            database,
            username,
            password,
            connection_config=config.connection,
        )
    except RuntimeError as error:
        _log_authentication_failure(DEFAULT_AUTHENTICATION_FAILURE_LABEL, error)
        return None

    async with session:
        try:
            await session.authenticate()
        except AuthenticationError as error:
            _log_authentication_failure(
                AUTHENTICATION_FAILURE_LABELS.get(
                    error.kind, DEFAULT_AUTHENTICATION_FAILURE_LABEL
                ),
                error,
            )
            return None
        except Exception as error:  # noqa: BLE001
            _log_authentication_failure(DEFAULT_AUTHENTICATION_FAILURE_LABEL, error)
            return None

        token = CancellationToken()
        install_signal_handlers(token)

        runner = PollCycleRunner(
            session,
            SnapshotWriter(config.storage),
            config.polling,
        )
        listener = OperatorInterruptListener(token, input_stream)

        logger.info('Running Vehicles Backup into %s', config.storage.output_directory)
        logger.info('Press Enter to end the program...')

        first: FirstCompleted = await race_until_first_completes(
            runner.run_forever(token), listener, token
        )

    logger.info('Program ended')
    return first


def main(argv: Sequence[str] | None = None) -> int:
    """
    Console script entry point.

    Returns:
        Process exit code; always 0.
    """
    arguments: list[str] = list(sys.argv[1:] if argv is None else argv)
    parser: argparse.ArgumentParser = build_arg_parser()

    if len(arguments) != EXPECTED_ARGUMENT_COUNT:
        parser.print_help(file=sys.stdout)
        return 0

    # '--' keeps a password starting with '-' from being read as an option
    args: argparse.Namespace = parser.parse_args(['--', *arguments])

    setup_logger()
    try:
        config: BackupConfig = resolve_config()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as error:
        logger.error('Could not load configuration: %s', error)
        return 0
    setup_logger(config=config.logging)

    try:
        asyncio.run(
            run_backup(
                args.server,
                args.database,
                args.username,
                args.password,
                config,
            )
        )
    except KeyboardInterrupt:
        logger.info('Interrupted. Program ended')

    return 0
