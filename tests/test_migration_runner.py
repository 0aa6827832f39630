"""
Tests for the startup migration runner.
"""

from unittest.mock import MagicMock, patch

import pytest

from points_ledger.db import migration_runner
from points_ledger.db.migration_runner import get_sync_database_url, run_migrations


class TestSyncDatabaseUrl:
    """Tests for the Alembic driver swap."""

    def test_asyncpg_becomes_psycopg2(self):
        url = get_sync_database_url("postgresql+asyncpg://u:p@db:5432/points")
        assert url == "postgresql+psycopg2://u:p@db:5432/points"

    def test_defaults_to_settings_url(self):
        assert "+asyncpg" not in get_sync_database_url()


class TestRunMigrations:
    """Tests for run_migrations with Alembic patched out."""

    def test_up_to_date_skips_upgrade(self):
        with (
            patch.object(migration_runner, "create_engine") as create_engine,
            patch.object(migration_runner, "_get_current_revision", return_value="abc"),
            patch.object(migration_runner, "_get_head_revision", return_value="abc"),
            patch.object(migration_runner, "command") as command,
        ):
            run_migrations()

        command.upgrade.assert_not_called()
        create_engine.return_value.dispose.assert_called_once()

    def test_behind_runs_upgrade(self):
        with (
            patch.object(migration_runner, "create_engine"),
            patch.object(migration_runner, "_get_current_revision", side_effect=[None, "abc"]),
            patch.object(migration_runner, "_get_head_revision", return_value="abc"),
            patch.object(migration_runner, "command") as command,
        ):
            run_migrations()

        command.upgrade.assert_called_once()
        assert command.upgrade.call_args.args[1] == "head"

    def test_failure_raises_runtime_error(self):
        engine = MagicMock()
        with (
            patch.object(migration_runner, "create_engine", return_value=engine),
            patch.object(migration_runner, "_get_current_revision", return_value=None),
            patch.object(migration_runner, "_get_head_revision", return_value="abc"),
            patch.object(migration_runner, "command") as command,
        ):
            command.upgrade.side_effect = Exception("relation already exists")

            with pytest.raises(RuntimeError, match="relation already exists"):
                run_migrations()

        engine.dispose.assert_called_once()
