from __future__ import annotations

import pytest

from cloud_monitor.model.arena import Arena
from cloud_monitor.model.kinds import ResourceKind
from cloud_monitor.model.resources import Volume
from cloud_monitor.util.errors import DuplicateResourceError, PoolFrozenError


def test_arena_iterates_in_id_order() -> None:
    arena = Arena(ResourceKind.VOLUME, [Volume(id="vol-c"), Volume(id="vol-a"), Volume(id="vol-b")])

    assert arena.ids() == ["vol-a", "vol-b", "vol-c"]
    assert [v.id for v in arena] == ["vol-a", "vol-b", "vol-c"]
    assert len(arena) == 3
    assert "vol-a" in arena


def test_arena_rejects_duplicate_ids() -> None:
    with pytest.raises(DuplicateResourceError):
        Arena(ResourceKind.VOLUME, [Volume(id="vol-a"), Volume(id="vol-a")])


def test_take_removes_once_and_records_claim() -> None:
    arena = Arena(ResourceKind.VOLUME, [Volume(id="vol-a")])

    first = arena.take("vol-a")
    second = arena.take("vol-a")

    assert first is not None and first.id == "vol-a"
    assert second is None
    assert len(arena) == 0
    assert arena.claimed_ids == frozenset({"vol-a"})


def test_take_missing_id_is_a_no_op() -> None:
    arena = Arena(ResourceKind.VOLUME, [Volume(id="vol-a")])

    assert arena.take("vol-missing") is None
    assert arena.ids() == ["vol-a"]
    assert arena.claimed_ids == frozenset()


def test_release_does_not_record_claim() -> None:
    arena = Arena(ResourceKind.VOLUME, [Volume(id="vol-a")])

    released = arena.release("vol-a")

    assert released is not None
    assert len(arena) == 0
    assert arena.claimed_ids == frozenset()


def test_claimed_id_cannot_be_re_added() -> None:
    arena = Arena(ResourceKind.VOLUME, [Volume(id="vol-a")])
    arena.take("vol-a")

    with pytest.raises(DuplicateResourceError):
        arena.add(Volume(id="vol-a"))


def test_frozen_arena_rejects_mutation() -> None:
    arena = Arena(ResourceKind.VOLUME, [Volume(id="vol-a")])
    arena.freeze()

    assert arena.frozen
    with pytest.raises(PoolFrozenError):
        arena.take("vol-a")
    with pytest.raises(PoolFrozenError):
        arena.add(Volume(id="vol-b"))
    # reads still work
    assert arena.get("vol-a") is not None


def test_name_defaults_to_name_tag_then_id() -> None:
    tagged = Volume(id="vol-a", tags={"Name": "data"})
    untagged = Volume(id="vol-b")

    assert tagged.name == "data"
    assert untagged.name == "vol-b"
