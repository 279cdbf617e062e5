"""
Tests for concurrent registries sharing one database.

FastAPI runs each request on its own worker thread with its own session, so
two metadata writes touching the same index bucket can overlap. The bucket
must end up holding every token written to it.
"""
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tests.conftest import make_token_id
from tests.test_metadata_index import assert_index_consistent
from token_registry.database import Base
from token_registry.models.domain import TextValue
from token_registry.services.authorization import Authorizer
from token_registry.services.registry import TokenRegistry


@pytest.fixture
def session_factory(tmp_path):
    """Sessions over a file-backed SQLite database shared across threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'registry.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


def gold():
    return TextValue(value="gold")


class TestOverlappingMetadataWrites:
    """Test that overlapping writers never lose an index entry."""

    def test_shared_bucket_keeps_both_writers(self, session_factory, clock):
        token_x, token_a, token_b = (make_token_id(label) for label in ("X", "A", "B"))

        setup = session_factory()
        admin = TokenRegistry(setup, Authorizer("admin"), clock)
        admin.set_admin("admin")
        for token_id in (token_x, token_a, token_b):
            admin.issue(token_id, "alice", clock.now() + 1000)
        admin.set_metadata(token_x, "d", {"tier": gold()})
        setup.close()

        first_read = threading.Event()
        second_done = threading.Event()
        errors = []

        def slow_writer():
            session = session_factory()
            registry = TokenRegistry(session, Authorizer("alice"), clock)
            read_bucket = registry.store.get_for_update

            def read_then_stall(key, default=None):
                value = read_bucket(key, default)
                if key.startswith("index:") and not first_read.is_set():
                    first_read.set()
                    # Give the other writer a chance to run before writing back
                    second_done.wait(timeout=1)
                return value

            registry.store.get_for_update = read_then_stall
            try:
                registry.set_metadata(token_a, "d", {"tier": gold()})
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        def fast_writer():
            first_read.wait(timeout=5)
            session = session_factory()
            try:
                TokenRegistry(session, Authorizer("alice"), clock).set_metadata(
                    token_b, "d", {"tier": gold()}
                )
            except Exception as e:
                errors.append(e)
            finally:
                second_done.set()
                session.close()

        threads = [threading.Thread(target=slow_writer), threading.Thread(target=fast_writer)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert errors == []

        check = session_factory()
        registry = TokenRegistry(check, Authorizer("alice"), clock)
        assert sorted(registry.query_by_attribute("tier", gold())) == \
            sorted([token_x, token_a, token_b])
        assert_index_consistent(check, registry, [token_x, token_a, token_b])
        check.close()
