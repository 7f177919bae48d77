#!/usr/bin/env python3
"""
dbkernel - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Wires the database module into the orchestrator and runs
until SIGINT/SIGTERM.

- Compatible with process managers (PM2, systemd)
- Can be started, stopped, and restarted safely
- A fatal database error exits with status 1

============================================================
USAGE
============================================================
Direct execution:
    python app.py --db-dialect sqlite --db-database ./data.db

Environment-based configuration (.env is loaded too):
    DB_DIALECT=postgres DB_HOST=db.internal python app.py

Worker of a multi-process deployment:
    python app.py --process-mode worker

============================================================
EXTENDING THE SCHEMA
============================================================
Modules contribute tables through the "database:ddl" hook,
either from their latch(hooks) method or at wiring time:

    def extend_schema(handle, model):
        model.define("users", Column("id", Integer, primary_key=True))

    orchestrator.latch(DDL_HOOK, extend_schema)

============================================================
"""

import logging
import sys
from typing import List, Optional

from database.database_module import DatabaseModule
from orchestrator.core import Orchestrator
from orchestrator.cli import main as cli_main


# ============================================================
# MODULE WIRING
# ============================================================

def wire_modules(orchestrator: Orchestrator) -> None:
    """
    Register all modules with the orchestrator.

    The database module is critical: if it cannot connect or
    synchronize the schema, the process does not start. It has no
    start timeout: authentication and schema sync run to completion.
    """
    logging.getLogger(__name__).debug("Wiring modules")

    orchestrator.register_module(
        name="database",
        module_class=DatabaseModule,
        dependencies=[],
        critical=True,
        timeout_seconds=None,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    return cli_main(argv, wire=wire_modules)


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
