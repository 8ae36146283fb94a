from chat_core.streaming.frames import FrameNormalizer, FramingMode, detect_framing


def test_sse_frames_and_done():
    n = FrameNormalizer()
    frames = n.feed(
        b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
        b'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
        b"data: [DONE]\n\n"
    )
    assert n.mode is FramingMode.SSE
    assert [f["choices"][0]["delta"]["content"] for f in frames] == ["Hel", "lo"]
    assert n.done
    assert n.feed(b'data: {"text": "late"}\n\n') == []


def test_sse_partial_frames_buffered_across_reads():
    n = FrameNormalizer()
    assert n.feed(b'data: {"text": "a') == []
    assert n.feed(b'bc"}\n') == []
    frames = n.feed(b'\ndata: {"text": "d"}\n\n')
    assert frames == [{"text": "abc"}, {"text": "d"}]


def test_sse_multiple_data_lines_form_one_payload():
    n = FrameNormalizer()
    frames = n.feed(b'event: message\ndata: {"text":\ndata: "joined"}\n\n')
    assert frames == [{"text": "joined"}]


def test_sse_crlf_and_comments():
    n = FrameNormalizer()
    frames = n.feed(b': keep-alive\r\n\r\ndata: {"text": "x"}\r\n\r\n')
    assert n.mode is FramingMode.SSE
    assert frames == [{"text": "x"}]


def test_malformed_json_is_dropped():
    n = FrameNormalizer()
    frames = n.feed(b'data: {not json}\n\ndata: {"text": "ok"}\n\n')
    assert frames == [{"text": "ok"}]


def test_ndjson_lines():
    n = FrameNormalizer()
    frames = n.feed(b'{"token": "a"}\n{"token": "b"}\n{"tok')
    assert n.mode is FramingMode.NDJSON
    assert frames == [{"token": "a"}, {"token": "b"}]
    frames = n.feed(b'en": "c"}\nnoise line\n')
    assert frames == [{"token": "c"}]


def test_flush_parses_trailing_fragment():
    n = FrameNormalizer()
    assert n.feed(b'{"text": "tail"}') == []
    assert n.flush() == [{"text": "tail"}]

    sse = FrameNormalizer()
    assert sse.feed(b'data: {"text": "last"}') == []
    assert sse.flush() == [{"text": "last"}]


def test_mode_detected_once_and_frozen():
    n = FrameNormalizer()
    assert n.feed(b"   \n") == []
    assert n.mode is None
    n.feed(b'data: {"text": "a"}\n\n')
    assert n.mode is FramingMode.SSE
    # 后续出现 JSON 行也不会切换为 NDJSON
    frames = n.feed(b'{"text": "b"}\n\n')
    assert n.mode is FramingMode.SSE
    assert frames == []


def test_utf8_split_across_chunks():
    raw = 'data: {"text": "مرحبا 👋"}\n\n'.encode("utf-8")
    n = FrameNormalizer()
    frames = []
    for i in range(len(raw)):
        frames.extend(n.feed(raw[i:i + 1]))
    assert frames == [{"text": "مرحبا 👋"}]


def test_detect_framing():
    assert detect_framing("") is None
    assert detect_framing("  [1]") is FramingMode.NDJSON
    assert detect_framing("data: x") is FramingMode.SSE
