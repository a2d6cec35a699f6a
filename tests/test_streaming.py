"""
Tests for the streamed transcription reader.
"""

import json


def data_line(payload) -> str:
    return "data: " + json.dumps(payload, ensure_ascii=False) + "\n"


def delta(text: str) -> str:
    return data_line({"type": "transcript.text.delta", "delta": text})


def done(text: str) -> str:
    return data_line({"type": "transcript.text.done", "text": text})


class TestTranscriptionStreamReader:
    """Tests for TranscriptionStreamReader."""

    def test_deltas_accumulate(self):
        from voxpipe.streaming import TranscriptionStreamReader

        reader = TranscriptionStreamReader()
        reader.feed(delta("Hel"))
        reader.feed(delta("lo"))
        reader.feed("data: [DONE]\n")

        assert reader.finish() == "Hello"
        assert reader.event_count == 2

    def test_done_text_overrides_deltas(self):
        """The done event's text is authoritative."""
        from voxpipe.streaming import TranscriptionStreamReader

        reader = TranscriptionStreamReader()
        reader.feed(delta("Hel") + delta("lo") + done("Hi"))

        assert reader.finish() == "Hi"
        assert reader.collected == "Hello"

    def test_done_marker_keeps_done_text(self):
        from voxpipe.streaming import TranscriptionStreamReader

        reader = TranscriptionStreamReader()
        reader.feed(delta("a") + done("final") + "data: [DONE]\n")

        assert reader.finish() == "final"

    def test_split_across_chunks(self):
        """A JSON payload cut mid-object by the transport still parses."""
        from voxpipe.streaming import TranscriptionStreamReader

        body = (delta("Hello") + delta(" world")).encode()
        reader = TranscriptionStreamReader()
        for i in range(0, len(body), 7):
            reader.feed(body[i:i + 7])

        assert reader.finish() == "Hello world"

    def test_partial_line_waits_for_newline(self):
        from voxpipe.streaming import TranscriptionStreamReader

        reader = TranscriptionStreamReader()
        reader.feed(delta("a").rstrip("\n"))
        assert reader.collected == ""

        reader.feed("\n")
        assert reader.collected == "a"

    def test_record_split_across_lines(self):
        """A data line with broken JSON is joined with its continuation line."""
        from voxpipe.streaming import TranscriptionStreamReader

        reader = TranscriptionStreamReader()
        reader.feed('data: {"type": "transcript.text.delta",\n')
        reader.feed('"delta": "joined"}\n')

        assert reader.finish() == "joined"

    def test_held_record_dropped_by_next_data_line(self):
        from voxpipe.streaming import TranscriptionStreamReader

        reader = TranscriptionStreamReader()
        reader.feed('data: {"type": "transcript.text.delta", "del\n')
        reader.feed(delta("kept"))

        assert reader.finish() == "kept"

    def test_multibyte_split(self):
        """UTF-8 sequences split between chunks decode correctly."""
        from voxpipe.streaming import TranscriptionStreamReader

        body = delta("café").encode("utf-8")
        cut = body.index("é".encode("utf-8")) + 1
        reader = TranscriptionStreamReader()
        reader.feed(body[:cut])
        reader.feed(body[cut:])

        assert reader.finish() == "café"

    def test_trailing_line_without_newline(self):
        from voxpipe.streaming import TranscriptionStreamReader

        reader = TranscriptionStreamReader()
        reader.feed(delta("one") + delta("two").rstrip("\n"))

        assert reader.finish() == "onetwo"

    def test_segments_and_other_fields(self):
        """Segment events append; comments and event: lines are ignored."""
        from voxpipe.streaming import TranscriptionStreamReader

        reader = TranscriptionStreamReader()
        reader.feed(": keep-alive\n")
        reader.feed("event: message\n")
        reader.feed(data_line({"type": "transcript.text.segment", "text": "seg"}))
        reader.feed(data_line({"type": "something.else"}))

        assert reader.finish() == "seg"
        assert reader.event_types["something.else"] == 1


class TestReadTranscriptionStream:
    def test_reads_iterable(self):
        from voxpipe.streaming import read_transcription_stream

        chunks = [delta("Hi").encode(), b"data: [DONE]\n"]

        assert read_transcription_stream(iter(chunks)) == "Hi"

    def test_empty_stream(self):
        from voxpipe.streaming import read_transcription_stream

        assert read_transcription_stream([]) == ""
