import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from docvault.models import Base, User
from docvault.services.access_tokens import AccessTokenIssuer
from docvault.services.file_store import FileStore
from docvault.services.hash_artifact_store import HashArtifactStore

TEST_FILE_SECRET = "test-file-access-secret"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def engine():
    """SQLite in-memory engine shared by every test.

    pysqlite's implicit transaction handling is switched off and BEGIN is
    emitted explicitly, otherwise SAVEPOINTs do not work.
    """
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(eng, "connect")
    def _no_implicit_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(eng)
    return eng


@pytest.fixture
def db_session(engine):
    """Provide a transactional session that rolls back after each test.

    ``session.commit()`` inside the code under test only releases a SAVEPOINT.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, join_transaction_mode="create_savepoint")
    yield session
    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make(email: str | None = None, full_name: str = "Test User") -> User:
        counter["n"] += 1
        user = User(email=email or f"user{counter['n']}@example.com", full_name=full_name)
        db_session.add(user)
        db_session.flush()
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user("owner@example.com", "Owner")


@pytest.fixture
def other_user(make_user):
    return make_user("stranger@example.com", "Stranger")


@pytest.fixture
def storage_root(tmp_path):
    return str(tmp_path / "storage")


@pytest.fixture
def file_store(storage_root):
    return FileStore(storage_root)


@pytest.fixture
def hash_store(storage_root):
    return HashArtifactStore(storage_root)


@pytest.fixture
def tokens():
    return AccessTokenIssuer(TEST_FILE_SECRET)
