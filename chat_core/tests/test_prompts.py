from chat_core.prompts import build_grounding_context, detect_language, load_knowledge


def test_detect_language():
    assert detect_language("where is my book") == "en"
    assert detect_language("أين كتابي") == "ar"
    assert detect_language("") == "en"


def test_knowledge_file_loads():
    kb = load_knowledge()
    ids = [s["id"] for s in kb["sections"]]
    assert set(kb["defaults"]) <= set(ids)


def test_matching_sections_are_selected():
    ctx = build_grounding_context("How does voice search work?")
    assert ctx.startswith("You are an expert on Smart Shelf.")
    assert "\n\nKnowledge:\n- Search:" in ctx
    assert "Shelf Map:" not in ctx


def test_defaults_when_nothing_matches():
    ctx = build_grounding_context("hello there")
    assert "Smart Shelf is a modern library assistant." in ctx
    assert "Features:" in ctx
    assert "Key pages:" in ctx


def test_arabic_locale():
    ctx = build_grounding_context("ما هي المميزات؟")
    assert "المميزات:" in ctx
    assert "Knowledge:" in ctx
