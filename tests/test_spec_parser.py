import pytest

from mockup_engine.framework.errors import ConfigurationError
from mockup_engine.framework.spec import (
    DEFAULT_SCREEN,
    parse_spec,
    parse_spec_text,
    screen_description,
    spec_to_markdown,
)

from conftest import SPEC_TEXT


def test_parses_sections_and_screens(spec):
    assert spec.title == "Where Is My Car?"
    assert spec.type == "Mobile application UI"
    assert spec.styles == "Warm palette with a red accent."
    assert spec.screens == ("Save Spot", "Find Car")
    assert spec.models is None


def test_screens_line_is_used_when_no_bold_list_items():
    spec = parse_spec_text("# App\n\n## Description\nScreens: Home, Settings.\n\n## Type\nWeb app\n")
    assert spec.screens == ("Home", "Settings")


def test_default_screen_when_description_names_none():
    spec = parse_spec_text("# App\n\n## Description\nA single dashboard.\n")
    assert spec.screens == (DEFAULT_SCREEN,)
    assert spec.type == "Mobile application UI"


def test_missing_description_raises():
    with pytest.raises(ConfigurationError, match="Missing required sections: description"):
        parse_spec_text("# App\n\n## Type\nWeb app\n")


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigurationError, match="Spec file not found"):
        parse_spec(str(tmp_path / "missing.md"))


def test_parse_spec_reads_file(tmp_path):
    path = tmp_path / "spec.md"
    path.write_text(SPEC_TEXT, encoding="utf-8")
    spec = parse_spec(str(path))
    assert spec.source_path == str(path)
    assert spec.screens == ("Save Spot", "Find Car")


def test_optional_sections_and_front_matter():
    text = """---
owner: design
---
# Parking

## Description
Users can save a spot quickly.
- **Save Spot** - buttons
* **History**

## Inspiration
- [Dribbble](https://dribbble.com/shots/parking)
- images/garage.jpg

## Models
- baseline
- openai:dall-e-3

## Critique Criteria
- Clarity

## Notes
Keep it simple.
"""
    spec = parse_spec_text(text)
    assert spec.front_matter == {"owner": "design"}
    assert spec.screens == ("Save Spot", "History")
    assert spec.primary_tasks == ("save a spot quickly",)
    assert spec.inspiration == ("https://dribbble.com/shots/parking", "images/garage.jpg")
    assert spec.models == ("baseline", "openai:dall-e-3")
    assert spec.critique_criteria == "- Clarity"
    assert spec.notes == "Keep it simple."


def test_screen_description_uses_named_list_item(spec):
    assert screen_description(spec, "Save Spot") == "large level buttons plus a text field for a custom label."
    assert screen_description(spec, "Settings") == spec.description


def test_spec_to_markdown_round_trips_key_sections(spec):
    reparsed = parse_spec_text(spec_to_markdown(spec))
    assert reparsed.title == spec.title
    assert reparsed.screens == spec.screens
    assert reparsed.styles == spec.styles
