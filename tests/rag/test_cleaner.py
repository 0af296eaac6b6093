from offline_rag.memory.rag.cleaner import clean_text, needs_cleaning


def test_removes_special_tokens_and_markers():
    raw = "<|im_start|>Reset the router.[INST] Hold the button.<|endoftext|> [unused3]<EOS>"
    assert clean_text(raw) == "Reset the router. Hold the button."


def test_removes_control_characters_but_keeps_paragraphs():
    raw = "First\x00 paragraph.\x07\r\n\r\n\r\n\r\nSecond\tparagraph."
    assert clean_text(raw) == "First paragraph.\n\nSecond paragraph."


def test_repairs_mojibake_and_invisible_characters():
    raw = "It\u00e2\u0080\u0099s caf\u00c3\u00a9\u200b time\u00a0now"
    assert clean_text(raw) == "It's caf\u00e9 time now"


def test_normalises_spacing():
    assert clean_text("   lots    of   space   \n   here  ") == "lots of space\nhere"


def test_blank_text_unchanged():
    assert clean_text("") == ""
    assert clean_text("   ") == "   "


def test_needs_cleaning():
    assert needs_cleaning("answer<|eot_id|>")
    assert needs_cleaning("bell\x07")
    assert needs_cleaning("caf\u00c3\u00a9")
    assert needs_cleaning("gap     here")
    assert not needs_cleaning("A plain sentence about routers.")
    assert not needs_cleaning("   ")
