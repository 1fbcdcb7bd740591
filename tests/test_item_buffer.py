"""
Tests for the bounded item buffer.
"""

import pytest

from tagscan.capture.item_buffer import ItemBuffer
from tagscan.models import MAX_ITEMS, ItemKind


class TestItemBuffer:
    """Tests for capacity, ordering and selection."""

    def test_default_capacity(self):
        assert ItemBuffer().max_items == MAX_ITEMS == 15

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            ItemBuffer(max_items=0)

    def test_add_auto_selects(self, make_item):
        buffer = ItemBuffer()
        item = make_item(selected=False)
        assert buffer.add(item) is None
        assert item.selected
        assert buffer.selected_items() == [item]

    def test_overflow_evicts_oldest_and_keeps_order(self, make_item):
        buffer = ItemBuffer(max_items=3)
        items = [make_item(name=f"Photo {i}") for i in range(1, 5)]
        evicted = [buffer.add(item) for item in items]

        assert evicted == [None, None, None, items[0]]
        assert len(buffer) == 3
        assert [i.name for i in buffer] == ["Photo 2", "Photo 3", "Photo 4"]
        assert buffer.is_full

    def test_never_exceeds_capacity(self, make_item):
        buffer = ItemBuffer(max_items=15)
        for i in range(40):
            buffer.add(make_item(name=str(i)))
            assert len(buffer) <= 15
        assert [i.name for i in buffer] == [str(n) for n in range(25, 40)]

    def test_toggle_select(self, make_item):
        buffer = ItemBuffer()
        item = make_item()
        buffer.add(item)

        assert buffer.toggle_select(item.id)
        assert not item.selected
        assert buffer.toggle_select(item.id)
        assert item.selected

    def test_unknown_ids_are_ignored(self, make_item):
        buffer = ItemBuffer()
        buffer.add(make_item())

        assert not buffer.toggle_select("missing")
        assert not buffer.remove("missing")
        assert buffer.get("missing") is None
        assert len(buffer) == 1

    def test_remove(self, make_item):
        buffer = ItemBuffer()
        first, second = make_item(name="a"), make_item(name="b")
        buffer.add(first)
        buffer.add(second)

        assert buffer.remove(first.id)
        assert buffer.items == [second]

    def test_select_and_deselect_all(self, make_item):
        buffer = ItemBuffer()
        for _ in range(3):
            buffer.add(make_item())

        buffer.deselect_all()
        assert buffer.selected_items() == []
        buffer.select_all()
        assert len(buffer.selected_items()) == 3

    def test_selected_items_keep_insertion_order(self, make_item):
        buffer = ItemBuffer()
        items = [make_item(name=n) for n in "abcd"]
        for item in items:
            buffer.add(item)
        buffer.toggle_select(items[1].id)

        assert [i.name for i in buffer.selected_items()] == ["a", "c", "d"]

    def test_clear(self, make_item):
        buffer = ItemBuffer()
        buffer.add(make_item())
        buffer.clear()
        assert len(buffer) == 0

    def test_status_counts_by_kind(self, make_item):
        buffer = ItemBuffer(max_items=5)
        buffer.add(make_item(kind=ItemKind.PHOTO))
        buffer.add(make_item(kind=ItemKind.PHOTO))
        doc = make_item(kind=ItemKind.DOCUMENT)
        buffer.add(doc)
        buffer.toggle_select(doc.id)

        status = buffer.get_status()
        assert status["count"] == 3
        assert status["selected"] == 2
        assert status["by_kind"] == {"photo": 2, "document": 1}
        assert not status["is_full"]


class TestCapturedItem:
    """Tests for item invariants."""

    def test_empty_thumbnail_rejected(self, small_jpeg):
        from tagscan.models import CapturedItem

        with pytest.raises(ValueError):
            CapturedItem(kind=ItemKind.PHOTO, payload=small_jpeg, thumbnail=b"", name="x")

    def test_upload_payload_prefers_original(self, make_item):
        item = make_item(original_payload=b"original", original_content_type="image/png")
        assert item.upload_payload == b"original"
        assert item.upload_content_type == "image/png"

    def test_upload_payload_falls_back_to_payload(self, make_item):
        item = make_item()
        assert item.upload_payload == item.payload
        assert item.upload_content_type == "image/jpeg"
