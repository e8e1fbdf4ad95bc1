import pytest
import fakeredis
from sqlalchemy import create_engine

from dblock.sync import RedisLockBackend, SQLLockBackend


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_backend(fake_server):
    backend = RedisLockBackend(fakeredis.FakeRedis(server=fake_server, decode_responses=False))
    yield backend
    backend.close()


@pytest.fixture
def sql_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'locks.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def sql_backend(sql_engine):
    backend = SQLLockBackend(sql_engine)
    backend.create_schema()
    return backend


@pytest.fixture(params=["redis", "sql"])
def backend(request):
    return request.getfixturevalue(f"{request.param}_backend")
