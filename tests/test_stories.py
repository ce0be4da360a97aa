"""Tests for specflow.state.stories module."""

from specflow.state.stories import StructuredStory, normalize_story, normalize_story_list

TS = "2026-01-01T00:00:00+00:00"


class TestNormalizeStoryList:
    """Checklist fields accept lists or newline-delimited strings."""

    def test_list_trimmed_and_filtered(self):
        assert normalize_story_list(["  a ", "", 3, "b"]) == ["a", "b"]

    def test_newline_string(self):
        assert normalize_story_list("first\n\n  second  \r\nthird") == ["first", "second", "third"]

    def test_empty_values(self):
        assert normalize_story_list(None) == []
        assert normalize_story_list("") == []
        assert normalize_story_list({"a": 1}) == []


class TestNormalizeStory:
    """Test normalize_story id resolution and field mapping."""

    def test_epic_and_story_numbers_make_id(self):
        story = normalize_story({"title": "Login", "epicNumber": 1, "storyNumber": 2}, "# Login", TS, "sm")
        assert story.id == "1.2"
        assert story.title == "Login"
        assert story.epic_number == 1
        assert story.story_number == 2
        assert story.content == "# Login"
        assert story.stored_at == TS
        assert story.source_phase == "sm"

    def test_explicit_story_id_wins(self):
        story = normalize_story({"storyId": "AUTH-7", "epicNumber": 1, "storyNumber": 2}, "", TS, "sm")
        assert story.id == "AUTH-7"

    def test_story_key_used_when_no_id(self):
        story = normalize_story({"storyKey": "checkout", "title": "Checkout"}, "", TS, "sm")
        assert story.id == "checkout"

    def test_structured_source_preferred(self):
        metadata = {
            "title": "Ignored?",
            "structuredStory": {"id": "3.1", "title": "Cart", "acceptanceCriteria": "adds item\nremoves item"},
        }
        story = normalize_story(metadata, "body", TS, "sm")
        assert story.id == "3.1"
        assert story.title == "Cart"
        assert story.acceptance_criteria == ["adds item", "removes item"]

    def test_metadata_fills_gaps_in_structure(self):
        metadata = {"benefit": "save time", "structured": {"id": "2.2", "title": "Search"}}
        story = normalize_story(metadata, "", TS, "sm")
        assert story.title == "Search"
        assert story.benefit == "save time"

    def test_slug_fallback(self):
        story = normalize_story({"structured": {"slug": "login-page", "title": "Login"}}, "", TS, "sm")
        assert story.id == "login-page"

    def test_latest_fallback(self):
        story = normalize_story({"title": "Untracked"}, "", TS, "sm")
        assert story.id == "latest"

    def test_no_story_information(self):
        assert normalize_story({"path": "docs/x.md"}, "text", TS, "sm") is None
        assert normalize_story(None, "text", TS, "sm") is None

    def test_checklists_normalised(self):
        story = normalize_story(
            {"title": "T", "acceptanceCriteria": ["a", " "], "definitionOfDone": "tests pass\nreviewed"},
            "", TS, "sm",
        )
        assert story.acceptance_criteria == ["a"]
        assert story.definition_of_done == ["tests pass", "reviewed"]


class TestStructuredStoryRecord:
    def test_camel_case_round_trip(self):
        story = StructuredStory(id="1.1", user_role="shopper", acceptance_criteria=["ok"], extra={"owner": "ana"})
        record = story.to_record()

        assert record["userRole"] == "shopper"
        assert record["acceptanceCriteria"] == ["ok"]
        assert record["owner"] == "ana"
        assert "user_role" not in record
        assert "extra" not in record

        again = StructuredStory.from_record(record)
        assert again == story

    def test_record_lists_are_copies(self):
        story = StructuredStory(id="1.1", acceptance_criteria=["ok"])
        record = story.to_record()
        record["acceptanceCriteria"].append("changed")
        assert story.acceptance_criteria == ["ok"]
