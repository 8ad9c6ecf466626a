from __future__ import annotations

from espmon.link.frames import FrameDecoder

STREAM = '{"voltage": 48.1}\r\nSTATE:1,0,1,0\n\n  {"gap_height": 12.5}  \nSTATE:0,0'


def test_lines_are_independent_of_chunk_boundaries() -> None:
    expected = list(FrameDecoder().parse_chunks([STREAM]))
    assert expected == ['{"voltage": 48.1}', "STATE:1,0,1,0", '{"gap_height": 12.5}']
    for size in range(1, len(STREAM) + 1):
        chunks = [STREAM[i : i + size] for i in range(0, len(STREAM), size)]
        assert list(FrameDecoder().parse_chunks(chunks)) == expected
    for split in range(len(STREAM)):
        decoder = FrameDecoder()
        lines = decoder.feed(STREAM[:split]) + decoder.feed(STREAM[split:])
        assert lines == expected


def test_partial_tail_waits_for_terminator() -> None:
    decoder = FrameDecoder()
    assert decoder.feed('{"volt') == []
    assert decoder.pending == '{"volt'
    assert decoder.feed('age": 1}') == []
    assert decoder.feed("\n") == ['{"voltage": 1}']
    assert decoder.pending == ""
    assert decoder.stats()["lines"] == 1


def test_reset_drops_partial_line() -> None:
    decoder = FrameDecoder()
    decoder.feed("STATE:1,1")
    decoder.reset()
    assert decoder.feed(",1,1\n") == [",1,1"]


def test_passthrough_emits_each_message() -> None:
    decoder = FrameDecoder(passthrough=True)
    assert decoder.feed('{"voltage": 3}') == ['{"voltage": 3}']
    assert decoder.feed("STATE:1,1,1,1\n") == ["STATE:1,1,1,1"]
    assert decoder.feed("   ") == []
    assert decoder.pending == ""
