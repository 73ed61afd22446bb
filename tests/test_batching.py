"""Tests for dynamic batching."""

from commentscope.core.batching import calculate_batches
from commentscope.core.models import BatchConfig, CommentInput


def item(i, length=10, title=""):
    return CommentInput(id=str(i), content="x" * length, video_title=title)


class TestCalculateBatches:
    def test_empty(self):
        assert calculate_batches([]) == []

    def test_item_limit(self):
        batches = calculate_batches([item(i) for i in range(40)], BatchConfig(max_chars=10**6, max_items=15))
        assert [len(b) for b in batches] == [15, 15, 10]

    def test_char_limit_counts_title(self):
        items = [item(i, length=400, title="t" * 100) for i in range(10)]
        batches = calculate_batches(items, BatchConfig(max_chars=3000, max_items=15))
        assert [len(b) for b in batches] == [6, 4]

    def test_oversized_item_gets_its_own_batch(self):
        items = [item(0, 10), item(1, 5000), item(2, 10)]
        batches = calculate_batches(items, BatchConfig(max_chars=3000, max_items=15))
        assert [[i.id for i in b] for b in batches] == [["0"], ["1"], ["2"]]

    def test_min_items_keeps_batch_open(self):
        items = [item(i, 2000) for i in range(4)]
        batches = calculate_batches(items, BatchConfig(max_chars=3000, max_items=15, min_items=2))
        assert [len(b) for b in batches] == [2, 2]

    def test_order_and_membership_preserved(self):
        items = [item(i, 100 * (i % 7 + 1)) for i in range(50)]
        batches = calculate_batches(items)
        flattened = [i for b in batches for i in b]
        assert flattened == items
