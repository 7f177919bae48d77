"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for a module host process.

- Provides argparse-based CLI
- Adds the options every registered module declares
- Loads configuration from CLI and environment
- Maps startup failures to exit codes

============================================================
USAGE
============================================================
python app.py --db-dialect sqlite --db-database ./data.db
python app.py --process-mode worker
python app.py --check --log-level DEBUG

Exit codes: 0 ok, 1 startup/validation failure, 130 interrupted.

============================================================
"""

import argparse
import asyncio
import logging
import sys
from typing import Callable, List, Optional

from dotenv import load_dotenv

from .models import LOG_FORMATS, LOG_LEVELS, OrchestratorConfig, ProcessMode
from .core import Orchestrator, setup_logging
from core.exceptions import KernelException


__version__ = "1.0.0"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser(orchestrator: Optional[Orchestrator] = None) -> argparse.ArgumentParser:
    """
    Create the argument parser.

    Args:
        orchestrator: If given, its modules' options are added
    """
    defaults = OrchestratorConfig.from_env()

    parser = argparse.ArgumentParser(
        prog="dbkernel",
        description="Modular host process with a managed database connection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Process Modes:
  normal             - Open the database and synchronize the schema
  worker             - Open the database, leave the schema alone
  daemon-controller  - Control a background daemon, no database

Examples:
  %(prog)s --db-dialect sqlite --db-database ./data.db
  %(prog)s --db-host db.internal --db-schema-drop   # recreate all tables
  %(prog)s --process-mode worker
        """
    )

    # --------------------------------------------------------
    # Process Options
    # --------------------------------------------------------
    process_group = parser.add_argument_group("Process Options")

    process_group.add_argument(
        "--process-mode",
        type=str,
        choices=[m.value for m in ProcessMode],
        default=defaults.process_mode.value,
        help="Role of this process (default: %(default)s)",
    )

    process_group.add_argument(
        "--shutdown-timeout",
        type=int,
        default=defaults.shutdown_timeout_seconds,
        metavar="SECONDS",
        help="Shutdown timeout in seconds (default: %(default)s)",
    )

    process_group.add_argument(
        "--check",
        action="store_true",
        help="Start all modules, report readiness and stop again",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=list(LOG_LEVELS),
        default=defaults.log_level,
        help="Logging level (default: %(default)s)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=list(LOG_FORMATS),
        default=defaults.log_format,
        help="Logging format (default: %(default)s)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    if orchestrator is not None:
        orchestrator.declare_options(parser)

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """Validate CLI arguments, return list of errors."""
    return build_config(args).validate()


def build_config(args: argparse.Namespace) -> OrchestratorConfig:
    """Build orchestrator configuration from CLI arguments."""
    return OrchestratorConfig(
        process_mode=ProcessMode.parse(args.process_mode),
        shutdown_timeout_seconds=args.shutdown_timeout,
        log_level=args.log_level,
        log_format=args.log_format,
    )


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(orchestrator: Orchestrator, args: argparse.Namespace) -> int:
    """
    Run the orchestrator until shutdown.

    Returns:
        Exit code
    """
    logger = logging.getLogger("orchestrator")

    try:
        if args.check:
            await orchestrator.start()
            health = await orchestrator.health_check()
            logger.info(f"Check complete | healthy={health['healthy']}")
            await orchestrator.stop()
            return EXIT_OK if health["healthy"] else EXIT_FAILURE

        await orchestrator.run_forever()
        return EXIT_OK

    except KernelException:
        # Already reported by the orchestrator
        return EXIT_FAILURE
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Interrupted by user")
        await orchestrator.stop()
        return EXIT_INTERRUPTED


def main(
    argv: Optional[List[str]] = None,
    wire: Optional[Callable[[Orchestrator], None]] = None,
) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])
        wire: Registers modules and hook participants on the orchestrator

    Returns:
        Exit code
    """
    load_dotenv()

    orchestrator = Orchestrator()
    if wire is not None:
        wire(orchestrator)

    parser = create_parser(orchestrator)
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return EXIT_FAILURE

    config = build_config(args)
    setup_logging(config.log_level, config.log_format)
    orchestrator.configure(config=config, options=args)

    return asyncio.run(async_main(orchestrator, args))


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
