"""
Tests for the storage backends.

The Postgres store is exercised against a fake connection pool: what
matters here is the connection lifecycle (check out, commit or roll
back, return to the pool), not SQL against a live server.
"""

import pytest

from chainwitness.db import (
    DatabaseConfig,
    InMemoryWitnessStore,
    PostgresWitnessStore,
    StoreError,
)
from chainwitness.db import factory
from chainwitness.schemas import MerkleNode, VerificationRecord


class FakeCursor:

    def __init__(self, connection):
        self.connection = connection
        self.rowcount = 0
        self.closed = False

    def execute(self, sql, params=()):
        self.connection.statements.append(sql.strip())

    def fetchone(self):
        return (1,)

    def fetchall(self):
        return []

    def close(self):
        self.closed = True


class FakeConnection:

    def __init__(self):
        self.autocommit = True
        self.closed = 0
        self.statements = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakePool:
    """Stands in for psycopg2.pool.ThreadedConnectionPool."""

    def __init__(self, minconn=1, maxconn=10, dsn=None):
        self.minconn = minconn
        self.maxconn = maxconn
        self.dsn = dsn
        self.idle = []
        self.checked_out = []
        self.created = 0
        self.returned = []
        self.closed_all = False

    def getconn(self):
        conn = self.idle.pop() if self.idle else self._new()
        self.checked_out.append(conn)
        return conn

    def putconn(self, conn, close=False):
        self.checked_out.remove(conn)
        self.returned.append((conn, close))
        if not close:
            self.idle.append(conn)

    def closeall(self):
        self.closed_all = True

    def _new(self):
        self.created += 1
        return FakeConnection()


def record(title: str = "Alpha", revision_id: int = 1) -> VerificationRecord:
    return VerificationRecord(
        domain_id="d",
        genesis_hash="g",
        revision_id=revision_id,
        document_title=title,
        content_hash="c",
        metadata_hash="m",
        verification_hash=f"v{revision_id}",
        timestamp="20240301120000",
    )


class TestPostgresConnectionPool:

    @pytest.fixture
    def pool(self):
        return FakePool()

    @pytest.fixture
    def pg_store(self, pool):
        return PostgresWitnessStore(pool, lock_timeout_ms=500, statement_timeout_ms=1000)

    def test_transaction_returns_connection(self, pg_store, pool):
        with pg_store.transaction() as session:
            session.count_records()

        assert pool.checked_out == []
        conn, close = pool.returned[0]
        assert close is False
        assert conn.commits == 1
        assert conn.autocommit is False
        assert "SET LOCAL lock_timeout = '500ms'" in conn.statements

    def test_connections_are_reused(self, pg_store, pool):
        for _ in range(5):
            with pg_store.transaction() as session:
                session.max_witness_event_id()

        assert pool.created == 1
        assert len(pool.returned) == 5

    def test_nested_transaction_shares_connection(self, pg_store, pool):
        with pg_store.transaction() as outer:
            with pg_store.transaction() as inner:
                assert inner is outer
            assert len(pool.checked_out) == 1

        assert len(pool.returned) == 1

    def test_failure_rolls_back_and_returns(self, pg_store, pool):
        with pytest.raises(RuntimeError):
            with pg_store.transaction():
                raise RuntimeError("boom")

        conn, _ = pool.returned[0]
        assert conn.rollbacks == 1
        assert conn.commits == 0
        assert pool.checked_out == []

    def test_broken_connection_is_discarded(self, pg_store, pool):
        with pytest.raises(RuntimeError):
            with pg_store.transaction():
                pool.checked_out[0].closed = 1
                raise RuntimeError("connection lost")

        assert pool.returned[0][1] is True
        assert pool.idle == []

    def test_ping_and_close(self, pg_store, pool):
        assert pg_store.ping() is True
        assert pool.checked_out == []

        pg_store.close()
        assert pool.closed_all is True


class TestCreatePostgresStore:

    def test_pool_sized_from_config(self, monkeypatch):
        monkeypatch.setattr(factory.psycopg2.pool, "ThreadedConnectionPool", FakePool)
        config = DatabaseConfig(host="db", database="cw", pool_min_size=2, pool_max_size=7)

        store = factory.create_postgres_store(config)

        assert isinstance(store, PostgresWitnessStore)
        assert store._pool.minconn == 2
        assert store._pool.maxconn == 7
        assert "host=db" in store._pool.dsn

    def test_unreachable_database(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise factory.psycopg2.OperationalError("connection refused")

        monkeypatch.setattr(factory.psycopg2.pool, "ThreadedConnectionPool", refuse)

        with pytest.raises(StoreError, match="Could not connect"):
            factory.create_postgres_store(DatabaseConfig())

    def test_pool_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5433/cw")
        monkeypatch.setenv("DATABASE_POOL_MIN", "3")
        monkeypatch.setenv("DATABASE_POOL_MAX", "12")

        config = DatabaseConfig.from_env()

        assert (config.host, config.port) == ("db", 5433)
        assert (config.pool_min_size, config.pool_max_size) == (3, 12)


class TestInMemoryTransactions:

    def test_read_only_session_takes_no_snapshot(self, store):
        with store.transaction() as session:
            session.insert_record(record())

        with store.transaction() as session:
            session.record_by_hash("v1")
            session.find_merkle_nodes(1, "v1", 0)
            assert session.snapshot is None

    def test_first_write_takes_snapshot(self, store):
        with store.transaction() as session:
            session.count_records()
            assert session.snapshot is None
            session.insert_record(record())
            assert session.snapshot is not None
            assert session.snapshot.records == []

    def test_rollback_restores_state_before_first_write(self, store):
        with store.transaction() as session:
            session.insert_record(record(revision_id=1))

        with pytest.raises(RuntimeError):
            with store.transaction() as session:
                assert session.count_records() == 1
                session.insert_record(record(revision_id=2))
                session.insert_merkle_nodes([MerkleNode(
                    witness_event_id=1, depth=0, left_leaf="v1", right_leaf="v2", successor="s",
                )])
                raise RuntimeError("abort")

        with store.transaction() as session:
            assert session.count_records() == 1
            assert session.merkle_nodes(1) == []
            assert session.insert_record(record(revision_id=3)).row_id == 2

    def test_failed_read_only_session_keeps_tables(self, store):
        with store.transaction() as session:
            session.insert_record(record())

        with pytest.raises(RuntimeError):
            with store.transaction() as session:
                session.record_by_hash("v1")
                raise RuntimeError("abort")

        with store.transaction() as session:
            assert session.count_records() == 1

    def test_nested_writes_share_one_snapshot(self):
        store = InMemoryWitnessStore()
        with pytest.raises(RuntimeError):
            with store.transaction() as outer:
                outer.insert_record(record(revision_id=1))
                with store.transaction() as inner:
                    inner.insert_record(record(revision_id=2))
                raise RuntimeError("abort")

        with store.transaction() as session:
            assert session.count_records() == 0
