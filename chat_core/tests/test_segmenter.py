from chat_core.streaming.segmenter import CodepointSegmenter, GraphemeSegmenter, create_segmenter

E_ACUTE = "e\u0301"
THUMBS_UP_MEDIUM = "\U0001F44D\U0001F3FD"
FLAG_SA = "\U0001F1F8\U0001F1E6"
FAMILY = "\U0001F468\u200d\U0001F469\u200d\U0001F467"


def test_grapheme_keeps_clusters_together():
    seg = GraphemeSegmenter()
    text = E_ACUTE + THUMBS_UP_MEDIUM + FLAG_SA + "a"
    assert seg.segment(text) == [E_ACUTE, THUMBS_UP_MEDIUM, FLAG_SA, "a"]


def test_grapheme_zwj_sequence():
    assert GraphemeSegmenter().segment(FAMILY + "!") == [FAMILY, "!"]


def test_codepoint_fallback_splits_combining_marks():
    assert CodepointSegmenter().segment(E_ACUTE) == ["e", "\u0301"]


def test_empty_text():
    assert GraphemeSegmenter().segment("") == []
    assert CodepointSegmenter().segment("") == []


def test_create_segmenter():
    assert create_segmenter("codepoint").name == "codepoint"
    assert create_segmenter().name == "grapheme"
