"""Test knowledge base loading and keyword retrieval."""

import json

import pytest

from storytest.exceptions import KnowledgeBaseError
from storytest.retrieval import KnowledgeBase, Retriever, default_knowledge_base


class TestExtractKeywords:
    """Test keyword extraction from free text."""

    def test_drops_stop_words_and_short_words(self, retriever):
        keywords = retriever.extract_keywords("User should sign in to the dashboard, OK?")
        assert keywords == {"sign", "dashboard"}

    def test_punctuation_is_stripped(self, retriever):
        keywords = retriever.extract_keywords("Click 'Sign-In' button!")
        assert keywords == {"click", "sign", "button"}


class TestFindLocators:
    """Test locator lookup."""

    def test_normalized_keyword_matches_name(self, retriever):
        locators = retriever.find_locators(["sign-in"])

        assert locators["forms.sign_in"] == "form#login-form"
        assert "navigation.sign_in_link" in locators
        assert "sign_in.button" in locators
        assert "forms.email" not in locators

    def test_category_match_returns_whole_category(self, retriever):
        locators = retriever.find_locators(["forms"])
        assert set(locators) == {"forms.sign_in", "forms.email", "forms.password", "forms.submit"}

    def test_no_match(self, retriever):
        assert retriever.find_locators(["xyz"]) == {}

    def test_empty_keywords(self, retriever):
        assert retriever.find_locators(set()) == {}
        assert retriever.find_routes([]) == []


class TestFindRoutes:
    """Test route lookup."""

    def test_descriptor_format(self, retriever):
        assert retriever.find_routes(["report"]) == ["credit.report: GET /api/credit/report"]

    def test_duplicates_removed(self, retriever):
        routes = retriever.find_routes(["auth", "signin"])

        assert routes == [
            "auth.sign_in: POST /api/auth/signin",
            "auth.logout: POST /api/auth/logout",
        ]


class TestKnowledgeBaseLoad:
    """Test reading catalogs from disk."""

    def test_load(self, kb_files):
        kb = KnowledgeBase.load(*kb_files)

        assert kb.locators["forms"]["email"] == "input[type=\"email\"]"
        assert kb.routes["credit"]["report"] == "GET /api/credit/report"

    def test_missing_file(self, kb_files, tmp_path):
        locators_path, _ = kb_files

        with pytest.raises(KnowledgeBaseError, match="file not found") as exc_info:
            KnowledgeBase.load(locators_path, tmp_path / "nope.json")

        assert exc_info.value.path.endswith("nope.json")

    def test_malformed_json(self, kb_files, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json", encoding="utf-8")

        with pytest.raises(KnowledgeBaseError):
            KnowledgeBase.load(bad, kb_files[1])

    def test_wrong_shape(self, kb_files, tmp_path):
        flat = tmp_path / "flat.json"
        flat.write_text(json.dumps({"email": "#email"}), encoding="utf-8")

        with pytest.raises(KnowledgeBaseError, match="category -> name -> string"):
            KnowledgeBase.load(flat, kb_files[1])

    def test_packaged_catalogs(self):
        kb = default_knowledge_base()
        retriever = Retriever()

        assert "sign_in_link" in kb.locators["navigation"]
        assert "report" in kb.routes["credit"]
        assert retriever.knowledge_base is kb
