"""Tests for per-chapter slice extraction."""

from lecturenotes.services.slicer import (
    FALLBACK_WINDOW_LINES,
    extract_slice,
    proportional_slice,
    resolve_analysis_text,
)

SPARSE = "[00:00] Opening remarks.\n[04:00] Setting up the problem.\n[12:00] Wrapping up."


# --- extract_slice ---

class TestExtractSlice:
    def test_brackets_range_with_nearest_timestamps(self):
        result = extract_slice(SPARSE, "05:00", "10:00")
        assert result.startswith("[04:00]")
        assert "[12:00] Wrapping up." in result
        assert "Opening remarks" not in result

    def test_exact_match(self):
        assert extract_slice(SPARSE, "04:00", "12:00") == (
            "[04:00] Setting up the problem.\n[12:00] Wrapping up."
        )

    def test_end_past_last_timestamp_extends_to_document_end(self):
        text = SPARSE + "\nclosing line without time"
        result = extract_slice(text, "04:00", "30:00")
        assert result.endswith("closing line without time")

    def test_start_before_first_timestamp_uses_document_start(self):
        text = "Welcome everyone\n[01:00] a\n[02:00] b"
        assert extract_slice(text, "00:30", "01:00").startswith("Welcome everyone")

    def test_inverted_range_falls_back_to_window(self):
        lines = [f"[{m // 60:02d}:{m % 60:02d}:00] line {m}" for m in range(150)]
        text = "\n".join(lines)
        result = extract_slice(text, "20:00", "01:00")
        assert result.split("\n") == lines[20:20 + FALLBACK_WINDOW_LINES]

    def test_no_timestamps_in_document(self):
        assert extract_slice("plain text only", "00:00", "05:00") == ""

    def test_no_times_given(self):
        assert extract_slice(SPARSE, "", "") == ""


# --- proportional fallback ---

class TestProportionalSlice:
    def test_chunk_with_overlap(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(1000))
        assert proportional_slice(text, 1, 4, overlap=50) == text[200:550]

    def test_edges_clamped(self):
        text = "z" * 100
        assert proportional_slice(text, 0, 2, overlap=500) == text
        assert proportional_slice(text, 1, 2, overlap=10) == text[40:100]

    def test_degenerate_inputs(self):
        assert proportional_slice("", 0, 3) == ""
        assert proportional_slice("abc", 0, 0) == ""


class TestResolveAnalysisText:
    def test_uses_slice_when_long_enough(self):
        text = "\n".join(f"[{m:02d}:00] " + "words " * 20 for m in range(10))
        result, fallback = resolve_analysis_text(text, "02:00", "04:00", 0, 3)
        assert not fallback
        assert result.startswith("[02:00]")

    def test_short_slice_uses_proportional_chunk(self):
        result, fallback = resolve_analysis_text(SPARSE, "04:00", "12:00", 1, 3, min_chars=500)
        assert fallback
        assert result == proportional_slice(SPARSE, 1, 3, 500)

    def test_untimed_transcript_uses_proportional_chunk(self):
        text = "paragraph " * 200
        result, fallback = resolve_analysis_text(text, "", "", 2, 4, overlap=0)
        assert fallback
        assert result == text[1000:1500]
