"""Tests for taskbot.executors.archetype."""

import pytest

from taskbot.executors.archetype import classify, classify_tool_class, extract_signals


def test_youtube_download_is_deterministic_media_extract():
    c = classify("Download https://www.youtube.com/watch?v=abc123 to my Desktop")
    assert c.archetype == "media-extract"
    assert c.score == pytest.approx(0.95)
    assert c.tier == "deterministic"
    assert c.cache_key.primary_host == "youtube.com"
    assert c.params["output_dir"] == "Desktop"
    assert "yt-dlp" in c.hint


def test_question_is_web_search():
    c = classify("What is the weather in Paris tomorrow?")
    assert c.archetype == "web-search"
    assert c.tier == "api-only"
    assert c.cache_key.primary_host is None
    assert c.cache_key.tool_class == "browser"


def test_summarize_url_is_page_read():
    c = classify("Summarize https://example.com/blog/post")
    assert c.archetype == "page-read"
    assert c.score == pytest.approx(0.85)
    assert c.tier == "browser-passive"
    assert c.cache_key.primary_host == "example.com"
    assert c.params == {"url": "https://example.com/blog/post"}


def test_compare_two_urls_is_multi_page():
    c = classify("Compare https://a.com/pricing and https://b.com/pricing")
    assert c.archetype == "multi-page"
    assert c.score == pytest.approx(0.85)


def test_file_operation_is_local():
    c = classify("Delete ~/old_logs folder")
    assert c.archetype == "file-op"
    assert c.cache_key.tool_class == "local"


def test_recency_without_question_is_news_lookup():
    c = classify("check latest news about AI")
    assert c.archetype == "news-lookup"
    assert c.cache_key.tool_class == "browser"


def test_unknown_goal():
    c = classify("hello there")
    assert c.archetype == "unknown"
    assert c.score == 0.0
    assert c.tier == "llm-default"
    assert c.hint == ""


def test_email_addresses_are_not_urls():
    s = extract_signals("Send the weekly summary to alice@example.com")
    assert s.urls == []
    assert s.url_host is None


def test_bare_domain_becomes_url():
    s = extract_signals("read news.ycombinator.com")
    assert s.urls == ["https://news.ycombinator.com"]
    assert s.url_host == "news.ycombinator.com"


def test_tool_class_mixed_signals():
    assert classify_tool_class("Check disk usage and search for news about Linux") == "all"
    assert classify_tool_class("hello there") == "all"
