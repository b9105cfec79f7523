"""Tests for undo actions and the bounded undo stack."""

import pytest

from serpentnote.types import AppState, Channel
from serpentnote.undo import (
    DeleteChannel,
    DeleteImage,
    DeleteTag,
    UndoStack,
    snapshot_tags,
)


class TestUndoStack:
    """Bounded LIFO."""

    def test_pop_empty_returns_none(self):
        assert UndoStack().pop() is None

    def test_reverse_order(self):
        stack = UndoStack()
        actions = [DeleteImage("c", f"img{i}", i) for i in range(3)]
        for action in actions:
            stack.push(action)
        assert [stack.pop() for _ in range(3)] == list(reversed(actions))
        assert stack.pop() is None

    def test_eleventh_push_evicts_oldest(self):
        stack = UndoStack()
        actions = [DeleteImage("c", f"img{i}", i) for i in range(11)]
        for action in actions:
            stack.push(action)
        assert len(stack) == 10
        popped = [stack.pop() for _ in range(10)]
        assert popped == list(reversed(actions[1:]))
        assert actions[0] not in popped

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            UndoStack(capacity=0)

    def test_clear(self):
        stack = UndoStack(capacity=3)
        stack.push(DeleteImage("c", "x", 0))
        stack.clear()
        assert not stack
        assert len(stack) == 0


class TestDeleteChannel:
    """Channel restoration."""

    def test_restores_identical_channel_at_index(self):
        original = Channel(
            id="c2", name="Middle", prompt="p", negative_prompt="n",
            prompt_variants=["v1"], tags=["t"], images=["data:image/jpeg;base64,AA"],
            starred=True, order=3, created_at=42,
        )
        state = AppState(channels=[Channel(id="c1", name="First"), original, Channel(id="c3", name="Last")])
        action = DeleteChannel(original.snapshot(), index=1)
        state.channels.pop(1)
        # Mutating the deleted object afterwards must not leak into the snapshot
        original.name = "changed"

        restored = action.restore(state)
        assert [c.id for c in state.channels] == ["c1", "c2", "c3"]
        assert restored.to_dict() == Channel(
            id="c2", name="Middle", prompt="p", negative_prompt="n",
            prompt_variants=["v1"], tags=["t"], images=["data:image/jpeg;base64,AA"],
            starred=True, order=3, created_at=42,
        ).to_dict()

    def test_skips_when_id_present(self):
        state = AppState(channels=[Channel(id="c1", name="Back")])
        action = DeleteChannel(Channel(id="c1", name="Old"), index=0)
        assert action.restore(state) is None
        assert len(state.channels) == 1

    def test_out_of_range_index_appends(self):
        state = AppState(channels=[Channel(id="a", name="A")])
        DeleteChannel(Channel(id="b", name="B"), index=9).restore(state)
        assert [c.id for c in state.channels] == ["a", "b"]

    def test_describe(self):
        assert DeleteChannel(Channel(id="x", name="Cats")).describe() == 'Channel "Cats" restored'


class TestDeleteImage:
    """Image restoration."""

    def test_reinserts_at_position(self):
        channel = Channel(id="c", name="C", images=["a", "c"])
        state = AppState(channels=[channel])
        assert DeleteImage("c", "b", 1).restore(state) is channel
        assert channel.images == ["a", "b", "c"]

    def test_missing_channel(self):
        assert DeleteImage("gone", "b", 0).restore(AppState()) is None


class TestDeleteTag:
    """Tag restoration across channels."""

    def test_restores_vocabulary_and_channels(self):
        a = Channel(id="A", name="A", tags=["x", "cat", "y"])
        b = Channel(id="B", name="B", tags=["cat"])
        c = Channel(id="C", name="C", tags=["dog"])
        state = AppState(channels=[a, b, c], tags=["dog", "cat", "x", "y"])

        action = DeleteTag("cat", snapshot_tags(state.channels, "cat"), vocabulary_index=1)
        state.tags.remove("cat")
        for ch in state.channels:
            ch.tags = [t for t in ch.tags if t != "cat"]

        restored = action.restore(state)
        assert restored == ["A", "B"]
        assert a.tags == ["x", "cat", "y"]
        assert b.tags == ["cat"]
        assert c.tags == ["dog"]
        assert state.tags == ["dog", "cat", "x", "y"]

    def test_skips_deleted_channels(self):
        state = AppState(channels=[Channel(id="B", name="B")], tags=[])
        action = DeleteTag("cat", snapshot_tags([Channel(id="A", name="A", tags=["cat"])], "cat"))
        assert action.restore(state) == []
        assert state.tags == ["cat"]

    def test_snapshot_copies_lists(self):
        channel = Channel(id="A", name="A", tags=["cat"])
        affected = snapshot_tags([channel], "cat")
        channel.tags.append("more")
        assert affected[0].tags_before_deletion == ["cat"]
