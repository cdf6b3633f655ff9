import threading

import pytest

from db import Database, MemberRepository
from errors import MemberNotFound, RepositoryUnavailable


def _doc(cpf="1", name="Maria", **extra):
    doc = {
        "primaryMemberName": name,
        "cpf": cpf,
        "planDetails": {"type": "consulta", "numberOfLives": 1},
        "dependents": [],
        "paymentStatus": "em_dia",
        "isActive": True,
    }
    doc.update(extra)
    return doc


class TestDatabase:
    def test_fresh_database_forces_password_change(self, database):
        assert database.is_force_password_change() is True
        database.clear_force_password_change()
        assert database.is_force_password_change() is False

    def test_init_is_idempotent(self, database):
        database.init_db("someone@else.com", "hash")
        rows = database.fetch_all("SELECT username FROM admin_users")
        assert [r["username"] for r in rows] == ["admin@policardmed.com"]

    def test_unusable_path_raises_repository_unavailable(self, tmp_path):
        broken = Database(tmp_path / "missing-dir" / "x.db")
        with pytest.raises(RepositoryUnavailable):
            broken.fetch_one("SELECT 1")


class TestMemberRepository:
    def test_collection_path_uses_app_id(self, repository):
        assert repository.collection == "/artifacts/test-app/public/data/policardmed_members"

    def test_insert_assigns_id(self, repository):
        member_id = repository.insert(_doc())
        member = repository.get(member_id)
        assert member.id == member_id
        assert member.primary_member_name == "Maria"

    def test_get_missing_returns_none(self, repository):
        assert repository.get("nope") is None

    def test_find_by_field_exact_match(self, repository):
        repository.insert(_doc(cpf="111"))
        repository.insert(_doc(cpf="1111"))
        found = repository.find_by_field("cpf", "111")
        assert [m.cpf for m in found] == ["111"]

    def test_find_by_field_keeps_insert_order(self, repository):
        first = repository.insert(_doc(cpf="1", name="A"))
        second = repository.insert(_doc(cpf="1", name="B"))
        assert [m.id for m in repository.find_by_field("cpf", "1")] == [first, second]

    def test_patch_merges_top_level_keys(self, repository):
        member_id = repository.insert(_doc(email="a@example.com"))
        repository.patch(member_id, {"paymentStatus": "em_debito"})
        member = repository.get(member_id)
        assert member.payment_status == "em_debito"
        assert member.email == "a@example.com"

    def test_patch_missing_raises(self, repository):
        with pytest.raises(MemberNotFound):
            repository.patch("nope", {"paymentStatus": "em_debito"})

    def test_collections_are_isolated(self, database, repository):
        other = MemberRepository(database, "other-app")
        repository.insert(_doc(cpf="1"))
        assert other.list_all() == []
        assert other.find_by_field("cpf", "1") == []

    def test_every_write_bumps_revision(self, repository):
        assert repository.revision() == 0
        member_id = repository.insert(_doc())
        repository.patch(member_id, {"phone": "555"})
        assert repository.revision() == 2


class TestMemberSubscription:
    def test_first_snapshot_is_immediate(self, repository):
        repository.insert(_doc())
        sub = repository.subscribe_all(poll_interval=0.01)
        snapshot = next(sub)
        assert len(snapshot) == 1
        sub.cancel()

    def test_poll_reflects_remote_changes(self, repository):
        sub = repository.subscribe_all(poll_interval=0.01)
        assert next(sub) == []
        repository.insert(_doc())
        assert len(sub.poll()) == 1
        sub.cancel()

    def test_next_blocks_until_change(self, repository):
        sub = repository.subscribe_all(poll_interval=0.01)
        next(sub)
        timer = threading.Timer(0.05, repository.insert, args=(_doc(),))
        timer.start()
        try:
            snapshot = next(sub)
        finally:
            timer.join()
            sub.cancel()
        assert len(snapshot) == 1

    def test_cancel_ends_iteration_for_good(self, repository):
        sub = repository.subscribe_all(poll_interval=0.01)
        next(sub)
        sub.cancel()
        repository.insert(_doc())
        with pytest.raises(StopIteration):
            next(sub)
        assert sub.poll() == []

    def test_context_manager_cancels(self, repository):
        with repository.subscribe_all(poll_interval=0.01) as sub:
            assert list(zip(range(1), sub)) == [(0, [])]
        assert sub.cancelled

    def test_cancel_unblocks_waiting_iterator(self, repository):
        sub = repository.subscribe_all(poll_interval=0.01)
        next(sub)
        timer = threading.Timer(0.05, sub.cancel)
        timer.start()
        with pytest.raises(StopIteration):
            next(sub)
        timer.join()
