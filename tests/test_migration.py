"""The schema migration builds the same tables the models declare and tears them down again."""

import importlib.util
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from app.models.service import Base

MIGRATION = (
    Path(__file__).resolve().parents[1] / "app" / "migrations" / "versions" / "20261019_000001_marketplace_schema.py"
)


def _load_migration():
    location = importlib.util.spec_from_file_location("marketplace_schema_migration", MIGRATION)
    module = importlib.util.module_from_spec(location)
    location.loader.exec_module(module)
    return module


def test_upgrade_matches_models_and_downgrade_drops_everything():
    migration = _load_migration()
    assert migration.down_revision is None

    engine = create_engine("sqlite://")
    try:
        with engine.begin() as conn:
            context = MigrationContext.configure(conn)
            with Operations.context(context):
                migration.upgrade()

            inspector = inspect(conn)
            assert set(inspector.get_table_names()) == set(Base.metadata.tables)
            for name, table in Base.metadata.tables.items():
                reflected = {column["name"] for column in inspector.get_columns(name)}
                assert reflected == {column.name for column in table.columns}, name

            fill_indexes = {index["name"] for index in inspector.get_indexes("service_fill_request")}
            assert "idx_fill_request_service_provider" in fill_indexes
            audit_indexes = {index["name"] for index in inspector.get_indexes("audit_logs")}
            assert {"ix_audit_logs_entity_id", "idx_audit_logs_action_timestamp"} <= audit_indexes

            with Operations.context(context):
                migration.downgrade()
            assert inspect(conn).get_table_names() == []
    finally:
        engine.dispose()
