# =============================================================================
# Unit Tests - Record Windows
# =============================================================================
#
# Token counting is injected (a character-based stand-in) so the tiktoken
# BPE file is never downloaded.
# =============================================================================

from unittest.mock import patch

import pytest

from csv_analyst.services.chunker import partition_records, rows_for_token_budget


def _records(count: int) -> list[dict]:
    return [{"id": i} for i in range(count)]


def _chars(text: str) -> int:
    return len(text)


class TestPartitionRecords:
    """Tests for partition_records()."""

    def test_empty_input_gives_no_windows(self):
        assert partition_records([], 10) == []

    def test_exact_multiple(self):
        windows = partition_records(_records(30), 10)
        assert [len(w) for w in windows] == [10, 10, 10]

    def test_last_window_may_be_short(self):
        windows = partition_records(_records(25), 10)
        assert [len(w) for w in windows] == [10, 10, 5]

    def test_every_record_once_in_order(self):
        records = _records(47)
        windows = partition_records(records, 6)
        assert [r for w in windows for r in w] == records

    def test_window_size_must_be_positive(self):
        with pytest.raises(ValueError):
            partition_records(_records(3), 0)


class TestRowsForTokenBudget:
    """Tests for rows_for_token_budget()."""

    def test_budget_divided_by_row_cost(self):
        records = [{"k": "x" * 90}] * 5  # ~100 chars serialised
        rows = rows_for_token_budget(records, 1000, counter=_chars)
        assert 9 <= rows <= 10

    def test_at_least_one_row(self):
        records = [{"k": "x" * 5000}]
        assert rows_for_token_budget(records, 10, counter=_chars) == 1

    def test_empty_records(self):
        assert rows_for_token_budget([], 1000, counter=_chars) == 1

    def test_only_leading_rows_are_counted(self):
        calls = []

        def counter(text):
            calls.append(text)
            return 10

        rows_for_token_budget(_records(500), 1000, counter=counter)
        assert len(calls) == 20

    def test_default_counter_is_count_tokens(self):
        with patch("csv_analyst.services.chunker.count_tokens", return_value=50) as mock_count:
            rows = rows_for_token_budget(_records(4), 1000)
        assert rows == 20
        assert mock_count.call_count == 4
