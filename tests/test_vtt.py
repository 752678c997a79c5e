"""Tests for caption ingestion."""

from lecturenotes.services.segmenter import find_timestamps
from lecturenotes.services.vtt import (
    CaptionLine,
    captions_to_text,
    looks_like_vtt,
    parse_vtt,
    transcript_from_upload,
)

SAMPLE_VTT = """WEBVTT
Kind: captions

1
00:00:01.000 --> 00:00:04.500
Welcome to the course.

2
00:00:05.000 --> 00:00:09.000
Today we cover graphs
and their edges.

00:01:10.250 --> 00:01:12.000
See you next week.
"""


class TestParseVtt:
    def test_cues(self):
        lines = parse_vtt(SAMPLE_VTT)
        assert lines == [
            CaptionLine("00:00:01", "00:00:04", "Welcome to the course."),
            CaptionLine("00:00:05", "00:00:09", "Today we cover graphs and their edges."),
            CaptionLine("00:01:10", "00:01:12", "See you next week."),
        ]

    def test_short_cue_times(self):
        content = "WEBVTT\n\n01:05.000 --> 01:07.000\nshort form\n"
        assert parse_vtt(content) == [CaptionLine("01:05", "01:07", "short form")]

    def test_raw_text_paragraphs(self):
        lines = parse_vtt("First paragraph\nstill first.\n\nSecond one.")
        assert [l.text for l in lines] == ["First paragraph\nstill first.", "Second one."]
        assert all(l.start == "" for l in lines)

    def test_header_without_cues_falls_back_to_raw_text(self):
        lines = parse_vtt("WEBVTT\n\njust some words")
        assert [l.text for l in lines] == ["WEBVTT", "just some words"]


class TestCaptionsToText:
    def test_timestamped_lines_are_recognized_by_segmenter(self):
        text = captions_to_text(parse_vtt(SAMPLE_VTT))
        assert text.split("\n")[0] == "[00:00:01] Welcome to the course."
        assert find_timestamps(text.split("\n")) == [(0, 1), (1, 5), (2, 70)]

    def test_untimed_lines(self):
        assert captions_to_text([CaptionLine("", "", "plain")]) == "plain"


class TestUpload:
    def test_detection(self):
        assert looks_like_vtt("\ufeffWEBVTT\n")
        assert looks_like_vtt("00:00:01.000 --> 00:00:02.000\nhi")
        assert not looks_like_vtt("plain transcript")

    def test_plain_text_is_kept_verbatim(self):
        text = "para one\n\npara two"
        assert transcript_from_upload(text) == text

    def test_vtt_is_converted(self):
        assert transcript_from_upload(SAMPLE_VTT).startswith("[00:00:01] Welcome")
