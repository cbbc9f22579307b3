"""
ScopeGate - scoped resource access over warehouse inventory tables.
Local/standalone runner.
"""

import os

import uvicorn

import scopegate.config as config
from scopegate.db import DB, dispose_db, init_db
from scopegate.models import create_schema


def prepare_local_schema() -> None:
    """Create the demo schema when explicitly asked to (local sqlite runs)."""
    init_db()
    try:
        create_schema(DB.engine)
        config.logger.info("Schema created", extra={"backend": config.DB_BACKEND})
    finally:
        dispose_db()


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    if config._get_bool("SCOPEGATE_CREATE_SCHEMA", False):
        prepare_local_schema()
    config.logger.info("ScopeGate starting...")
    uvicorn.run(
        "app.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=config._get_int("PORT", 8080),
    )
