"""TDD tests for the initial Alembic revision."""

import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

import docvault.models  # noqa: F401
from docvault.models.base import Base

REVISION = (
    Path(__file__).resolve().parents[2]
    / "docvault"
    / "migrations"
    / "versions"
    / "0001_initial_schema.py"
)


@pytest.fixture(scope="module")
def revision():
    spec = importlib.util.spec_from_file_location("initial_schema", REVISION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def migrated(revision):
    engine = create_engine("sqlite://")
    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            revision.upgrade()
    yield engine, revision
    engine.dispose()


class TestInitialSchema:
    def test_is_root_revision(self, revision):
        assert revision.down_revision is None

    def test_creates_every_model_table(self, migrated):
        engine, _ = migrated
        assert set(inspect(engine).get_table_names()) == set(Base.metadata.tables)

    def test_columns_match_models(self, migrated):
        engine, _ = migrated
        insp = inspect(engine)
        for name, table in Base.metadata.tables.items():
            migrated_cols = {c["name"] for c in insp.get_columns(name)}
            assert migrated_cols == {c.name for c in table.columns}, name

    def test_content_hash_unique(self, migrated):
        engine, _ = migrated
        insp = inspect(engine)
        unique_cols = [c["column_names"] for c in insp.get_unique_constraints("documents")]
        unique_cols += [
            i["column_names"] for i in insp.get_indexes("documents") if i.get("unique")
        ]
        assert ["content_hash"] in unique_cols

    def test_downgrade_drops_everything(self, migrated):
        engine, revision = migrated
        with engine.begin() as conn:
            with Operations.context(MigrationContext.configure(conn)):
                revision.downgrade()
        assert inspect(engine).get_table_names() == []
