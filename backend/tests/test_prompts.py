from domain.models import SubjectSlot, TextField, TextValue
from services.prompts import (
    build_background_pass_prompt,
    build_change_text_prompt,
    build_generation_prompt,
    build_main_pass_prompt,
    extract_two_line_text,
    rewrite_template_words,
    sanitize_user_notes,
)

NOTES_HEADER = "USER REQUESTED MINOR CHANGES (OPTIONAL):"


def test_sanitize_user_notes():
    assert sanitize_user_notes(None) is None
    assert sanitize_user_notes("   ") is None
    assert sanitize_user_notes("  warmer light ") == "warmer light"
    assert len(sanitize_user_notes("x" * 800)) == 500
    assert sanitize_user_notes("abcdef", max_chars=3) == "abc"


def test_change_text_prompt_starts_with_quoted_lines():
    prompt = build_change_text_prompt("BIG NEWS", "Part 2")
    lines = prompt.splitlines()
    assert lines[0] == "Change the text to:"
    assert lines[1] == '"BIG NEWS"'
    assert lines[2] == '"Part 2"'


def test_change_text_prompt_single_line():
    lines = build_change_text_prompt("ONLY ONE").splitlines()
    assert lines[1] == '"ONLY ONE"'
    assert lines[2] == ""


def test_notes_section_only_when_notes_given():
    for builder in (build_background_pass_prompt, build_main_pass_prompt):
        assert NOTES_HEADER not in builder("Promo", None)
        with_notes = builder("Promo", "make it sunny")
        assert NOTES_HEADER in with_notes
        assert '"make it sunny"' in with_notes

    assert NOTES_HEADER in build_change_text_prompt("A", "", "Promo", "bolder")
    assert NOTES_HEADER not in build_change_text_prompt("A", "", "Promo", None)


def test_fallback_differs_only_by_notes():
    primary = build_background_pass_prompt("Promo", "make it sunny")
    fallback = build_background_pass_prompt("Promo", None)
    assert primary.startswith(fallback)
    assert primary != fallback


def test_extract_two_line_text_follows_field_order():
    fields = [TextField(key="title"), TextField(key="subtitle")]
    texts = [TextValue(key="subtitle", value="second  "), TextValue(key="title", value="first")]
    assert extract_two_line_text(fields, texts) == ("first", "second")


def test_extract_two_line_text_without_fields_uses_submitted_order():
    texts = [TextValue(key="a", value="one"), TextValue(key="b", value="two"), TextValue(key="c", value="three")]
    assert extract_two_line_text([], texts) == ("one", "two")
    assert extract_two_line_text([], []) == ("", "")


class TestGenerationPrompt:
    SLOTS = [SubjectSlot("main", label="Host"), SubjectSlot("guest")]
    FIELDS = [TextField("title", default_value="PIERS", fill_color="#ffffff"), TextField("subtitle")]

    def _build(self, **overrides):
        args = dict(
            template_name="Promo",
            reconstruction_prompt="A host shouting PIERS in white capitals.",
            subject_slots=self.SLOTS,
            subject_slot_ids=["guest", "main"],
            text_fields=self.FIELDS,
            texts=[TextValue("title", "MORGAN"), TextValue("subtitle", "live *now*")],
        )
        args.update(overrides)
        return build_generation_prompt(**args)

    def test_images_are_numbered_in_upload_order(self):
        prompt = self._build()
        assert "- Image #1 is the template image (base canvas)." in prompt
        assert "- Image #2 is the replacement subject for slotId=guest (guest)." in prompt
        assert "- Image #3 is the replacement subject for slotId=main (Host)." in prompt

    def test_template_words_are_replaced_by_user_text(self):
        prompt = self._build()
        assert prompt.splitlines()[0] == "A host shouting MORGAN in white capitals."
        assert '- Line 1 [title] (fill #ffffff): "MORGAN"' in prompt
        assert '- Line 2 [subtitle]: "live *now*"' in prompt

    def test_no_subjects_and_default_base(self):
        prompt = self._build(reconstruction_prompt=None, subject_slot_ids=[])
        assert prompt.splitlines()[0] == "Recreate the template image exactly. Template: Promo."
        assert "- No subject replacement images were provided." in prompt
        assert "SUBJECT RULES:" not in prompt

    def test_customizations_and_notes_sections(self):
        plain = self._build()
        assert "CUSTOMIZATIONS" not in plain
        assert NOTES_HEADER not in plain

        prompt = self._build(customizations={"arrow": True, "mood": "dramatic"}, user_notes="more contrast")
        assert "- arrow: true" in prompt
        assert '- mood: "dramatic"' in prompt
        assert prompt.index("CUSTOMIZATIONS") < prompt.index(NOTES_HEADER)
        assert '"more contrast"' in prompt


def test_rewrite_template_words_skips_blank_values():
    fields = [TextField("title", default_value="PIERS")]
    assert rewrite_template_words("Say PIERS", fields, [TextValue("title", "  ")]) == "Say PIERS"
    assert rewrite_template_words("Say PIERS", fields, []) == "Say PIERS"
