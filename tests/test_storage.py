import threading

import pytest

from workflow_api.errors import AccessTokenNotFound
from workflow_api.models import PublishRecord, PublishStatus
from workflow_api.storage import InMemoryStore


def make_record(user_id="u1", workflow_name="deploy", status=PublishStatus.created):
    return PublishRecord(
        user_id=user_id,
        owner="acme",
        repository="svc",
        workflow_name=workflow_name,
        file_path=f".github/workflows/{workflow_name}.yml",
        status=status,
    )


class TestInMemoryStore:
    """Test token and history storage."""

    def setup_method(self):
        self.store = InMemoryStore()

    def test_save_and_get_token(self):
        self.store.save_token("u1", "ghp_one")

        assert self.store.get_access_token("u1") == "ghp_one"
        assert self.store.has_token("u1")

    def test_missing_token(self):
        with pytest.raises(AccessTokenNotFound) as exc_info:
            self.store.get_access_token("nobody")

        assert exc_info.value.http_status == 401
        assert exc_info.value.details == {"user_id": "nobody"}

    def test_empty_token_counts_as_missing(self):
        self.store.save_token("u1", "")

        with pytest.raises(AccessTokenNotFound):
            self.store.get_access_token("u1")

    def test_replace_and_delete_token(self):
        self.store.save_token("u1", "old")
        self.store.save_token("u1", "new")

        assert self.store.get_access_token("u1") == "new"
        assert self.store.delete_token("u1") is True
        assert self.store.delete_token("u1") is False
        assert not self.store.has_token("u1")

    def test_records_newest_first(self):
        first = self.store.add_record(make_record(workflow_name="a"))
        second = self.store.add_record(make_record(workflow_name="b"))

        assert [r.id for r in self.store.list_records()] == [second.id, first.id]

    def test_history_is_capped(self):
        store = InMemoryStore(max_records=2)
        for name in ("a", "b", "c"):
            store.add_record(make_record(workflow_name=name))

        assert [r.workflow_name for r in store.list_records()] == ["c", "b"]

    def test_records_filtered_by_user(self):
        self.store.add_record(make_record(user_id="u1"))
        self.store.add_record(make_record(user_id="u2"))
        self.store.add_record(make_record(user_id="u1", status=PublishStatus.failed))

        records = self.store.list_records("u1")

        assert len(records) == 2
        assert all(r.user_id == "u1" for r in records)
        assert records[0].status == PublishStatus.failed
        assert len(self.store.list_records()) == 3

    def test_concurrent_writes(self):
        """Test that concurrent writers do not lose records."""

        def writer(n):
            for i in range(50):
                self.store.add_record(make_record(user_id=f"user-{n}", workflow_name=f"wf-{i}"))
                self.store.save_token(f"user-{n}", f"token-{i}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(self.store.list_records()) == 400
        assert self.store.get_access_token("user-3") == "token-49"
