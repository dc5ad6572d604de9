"""Tests for content commits, version history and optimistic concurrency."""

import asyncio

import pytest

from alilm import store
from alilm.errors import ConcurrentModification, ConstraintViolation, NotFound, ValidationFailure
from alilm.services import nodes
from alilm.settings.config import settings

from conftest import block, span, unit


def article(last="foo"):
    return [
        block("b1", unit("u1", "Intro"), type="heading"),
        block("b2", unit("u0", "zero"), unit("u1", "one"), unit("u2", "a ", "b ", last)),
    ]


async def latest(db, node_id):
    return (await nodes.list_versions(db, node_id))[-1]


class TestCommit:
    async def test_node_without_initial_content_has_no_history(self, db):
        node = await nodes.create_node(db, title="Empty")
        assert node.version_count == 0
        assert node.live_content == []
        assert await nodes.list_versions(db, node.id) == []

    async def test_initial_content_is_version_one_with_no_changes(self, db):
        node = await nodes.create_node(db, title="Seeded", initial_content=article(), actor="alice")
        [v1] = await nodes.list_versions(db, node.id)
        assert (v1.version_id, v1.changed_by, v1.changes) == (1, "alice", [])
        assert v1.content_blocks == node.live_content

    async def test_span_edit_appends_exactly_one_version(self, db):
        node = await nodes.create_node(db, title="Article", initial_content=article("foo"), actor="alice")
        before = len(await nodes.list_versions(db, node.id))

        node = await nodes.commit_content(db, node.id, article("bar"), "bob")

        versions = await nodes.list_versions(db, node.id)
        assert len(versions) == before + 1
        assert node.version_count == len(versions)
        [change] = versions[-1].changes
        assert change["blockId"] == "b2"
        assert change["unitId"] == "u2"
        assert change["spanIndex"] == 2
        assert (change["oldText"], change["newText"]) == ("foo", "bar")
        assert versions[-1].changed_by == "bob"

    async def test_live_content_mirrors_latest_version(self, db):
        node = await nodes.create_node(db, title="Mirror", initial_content=[])
        for text in ["one", "two", "three"]:
            node = await nodes.commit_content(db, node.id, [block("b1", unit("u1", text))], "alice")
            assert node.live_content == (await latest(db, node.id)).content_blocks

    async def test_identical_recommit_records_empty_changes(self, db):
        node = await nodes.create_node(db, title="Same", initial_content=article())
        await nodes.commit_content(db, node.id, article("bar"), "alice")
        await nodes.commit_content(db, node.id, article("bar"), "alice")
        node = await nodes.commit_content(db, node.id, article("bar"), "alice")

        versions = await nodes.list_versions(db, node.id)
        assert [v.version_id for v in versions] == [1, 2, 3, 4]
        assert versions[2].changes == [] and versions[3].changes == []

    async def test_references_are_recomputed_on_every_commit(self, db):
        cited = [block("b1", unit("u1", span("Bukhari", "reference", refId="r1"), " ", span("d", "debate", debateId="d1")))]
        node = await nodes.create_node(db, title="Cited", initial_content=cited)
        assert (node.references, node.debates) == (["r1"], ["d1"])
        assert [n.id for n in await nodes.nodes_citing(db, "reference", "r1")] == [node.id]

        node = await nodes.commit_content(db, node.id, [block("b1", unit("u1", span("Muslim", "reference", refId="r2")))], "alice")
        assert (node.references, node.debates) == (["r2"], [])
        assert await nodes.nodes_citing(db, "reference", "r1") == []
        assert [n.id for n in await nodes.nodes_citing(db, "reference", "r2")] == [node.id]

    async def test_malformed_content_is_rejected_without_a_version(self, db):
        node = await nodes.create_node(db, title="Strict", initial_content=article())
        bad = [block("b1", {"id": "u1", "content": "mismatch", "spans": [span("x")]})]
        with pytest.raises(ValidationFailure):
            await nodes.commit_content(db, node.id, bad, "alice")
        assert len(await nodes.list_versions(db, node.id)) == 1

    async def test_keyed_strategy(self, db, monkeypatch):
        monkeypatch.setattr(settings, "DIFF_STRATEGY", "keyed")
        node = await nodes.create_node(db, title="Keyed", initial_content=[block("b1", unit("u1", "one"))])
        await nodes.commit_content(db, node.id, [block("b1", unit("u9", "new"), unit("u1", "one"))], "alice")
        [change] = (await latest(db, node.id)).changes
        assert (change["kind"], change["unitId"]) == ("add", "u9")


class TestHistory:
    async def test_versions_cannot_be_edited(self, db):
        node = await nodes.create_node(db, title="Frozen", initial_content=article())
        v1 = await nodes.get_version(db, node.id, 1)
        v1.changed_by = "mallory"
        with pytest.raises(ConstraintViolation):
            await db.flush()
        await db.rollback()

    async def test_versions_cannot_be_deleted(self, db):
        node = await nodes.create_node(db, title="Kept", initial_content=article())
        v1 = await nodes.get_version(db, node.id, 1)
        await db.delete(v1)
        with pytest.raises(ConstraintViolation):
            await db.flush()
        await db.rollback()

    async def test_missing_version(self, db):
        node = await nodes.create_node(db, title="Short", initial_content=article())
        with pytest.raises(NotFound):
            await nodes.get_version(db, node.id, 5)

    async def test_rollback_restores_as_new_version(self, db):
        node = await nodes.create_node(db, title="Undo", initial_content=article("foo"))
        await nodes.commit_content(db, node.id, article("bar"), "alice")
        node = await nodes.rollback(db, node.id, 1, "bob")

        versions = await nodes.list_versions(db, node.id)
        assert [v.version_id for v in versions] == [1, 2, 3]
        assert versions[-1].content_blocks == versions[0].content_blocks
        assert versions[-1].changed_by == "bob"
        assert node.live_content == versions[0].content_blocks

    async def test_compare_versions(self, db):
        node = await nodes.create_node(db, title="Compare", initial_content=article("foo"))
        await nodes.commit_content(db, node.id, article("bar"), "alice")
        await nodes.commit_content(db, node.id, article("baz"), "alice")
        [change] = await nodes.compare_versions(db, node.id, 1, 3)
        assert (change.old_text, change.new_text) == ("foo", "baz")


class TestConcurrency:
    async def test_parallel_commits_all_land(self, session_factory, monkeypatch):
        monkeypatch.setattr(settings, "COMMIT_MAX_RETRIES", 20)
        async with session_factory() as db:
            node_id = (await nodes.create_node(db, title="Busy", initial_content=[])).id

        async def writer(i):
            async with session_factory() as db:
                await nodes.commit_content(db, node_id, [block("b1", unit("u1", f"writer {i}"))], f"w{i}")

        await asyncio.gather(*(writer(i) for i in range(6)))

        async with session_factory() as db:
            node = await nodes.get_node(db, node_id)
            versions = await nodes.list_versions(db, node_id)
            assert [v.version_id for v in versions] == list(range(1, 8))
            assert node.version_count == 7
            assert node.live_content == versions[-1].content_blocks
            assert {v.changed_by for v in versions[1:]} == {f"w{i}" for i in range(6)}

    async def test_lost_race_is_retried_against_fresh_content(self, db, monkeypatch):
        node = await nodes.create_node(db, title="Race", initial_content=article("foo"))
        real_cas = store.compare_and_swap
        calls = []

        async def lose_once(session, node_id, expected, values):
            calls.append(expected)
            if len(calls) == 1:
                return False
            return await real_cas(session, node_id, expected, values)

        monkeypatch.setattr(store, "compare_and_swap", lose_once)
        node = await nodes.commit_content(db, node.id, article("bar"), "alice")
        assert calls == [1, 1]
        assert node.version_count == 2

    async def test_retries_are_bounded(self, db, monkeypatch):
        monkeypatch.setattr(settings, "COMMIT_MAX_RETRIES", 2)
        node = await nodes.create_node(db, title="Hopeless", initial_content=article())
        node_id = node.id
        calls = []

        async def always_lose(session, node_id, expected, values):
            calls.append(expected)
            return False

        monkeypatch.setattr(store, "compare_and_swap", always_lose)
        with pytest.raises(ConcurrentModification) as exc:
            await nodes.commit_content(db, node_id, article("bar"), "alice")
        assert exc.value.retryable
        assert len(calls) == 3
        assert len(await nodes.list_versions(db, node_id)) == 1
