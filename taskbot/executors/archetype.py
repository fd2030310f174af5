"""Archetype classifier — cheap structural fingerprint of a goal text.

Flat regex/set-membership signals feed nine hand-tuned scorers; the best
scorer wins if it clears ``SCORE_THRESHOLD``, otherwise the goal is
``unknown``. Runs in well under a millisecond, so it is safe to call on
every dispatch.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Literal
from urllib.parse import urlparse

from loguru import logger

from taskbot.store.models import CacheKey, ToolClass

ExecutionTier = Literal[
    "deterministic",    # known CLI, no reasoning needed
    "api-only",         # search / local tools, no browsing
    "browser-passive",  # fetch and read pages
    "browser-active",   # interact with a site
    "llm-default",      # no shortcut
]

SCORE_THRESHOLD = 0.4

# ════════════════════════════════════════════════════════════
# SIGNALS
# ════════════════════════════════════════════════════════════

URL_RE = re.compile(r"https?://[^\s)}\]]+", re.IGNORECASE)
DOMAIN_RE = re.compile(r"\b(?:[a-z0-9-]+\.)+[a-z]{2,}\b", re.IGNORECASE)
EMAIL_RE = re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE)
FILE_PATH_RE = re.compile(
    r"(?:~/|\./|/home/|/tmp/|/etc/|/usr/|/var/|/opt/|[a-zA-Z]:\\)[\w./-]+"
)

ACTION_VERBS = {
    "download", "save", "extract", "summarize", "compare", "read", "write",
    "edit", "create", "post", "tweet", "buy", "search", "find", "look",
    "browse", "navigate", "go", "open", "visit", "check", "click", "type",
    "login", "sign", "send", "reply", "like", "delete", "remove", "install",
    "run", "execute", "build", "compile", "generate", "make", "price",
}
TOOL_KEYWORDS = {"yt-dlp", "ffmpeg", "curl", "wget", "youtube-dl"}
MEDIA_NOUNS = {
    "video", "videos", "recording", "recordings", "screen", "screencast",
    "clip", "loom", "mp4", "m3u8", "hls",
}
OUTPUT_DIRS = [
    ("desktop", "Desktop"),
    ("downloads", "Downloads"),
    ("download", "Downloads"),
    ("documents", "Documents"),
]
RECENCY_WORDS = {
    "latest", "recent", "today", "news", "current", "trending", "now",
    "this week", "this month", "breaking",
}
DOC_KEYWORDS = {
    "pdf", "docx", "doc", "spreadsheet", "xlsx", "report", "resume",
    "proposal", "whitepaper", "invoice", "presentation", "csv",
}

HOST_ARCHETYPES = {
    "youtube.com": "media-extract",
    "youtu.be": "media-extract",
    "loom.com": "media-extract",
    "vimeo.com": "media-extract",
    "github.com": "page-read",
    "stackoverflow.com": "page-read",
    "reddit.com": "page-read",
    "wikipedia.org": "page-read",
    "twitter.com": "site-interact",
    "x.com": "site-interact",
    "facebook.com": "site-interact",
    "instagram.com": "site-interact",
    "linkedin.com": "site-interact",
    "amazon.com": "shopping",
    "ebay.com": "shopping",
    "walmart.com": "shopping",
}

# Hosts a media downloader handles without any reasoning
FAST_PATH_HOSTS = {
    "youtube.com", "youtu.be", "loom.com", "vimeo.com", "instagram.com", "tiktok.com",
}

# Tool-class signal families
FILE_PATTERNS = re.compile(
    r"(?:~/|\./|/home/|/tmp/|/etc/|/usr/|/var/|/opt/|[a-zA-Z]:\\)[\w./-]+"
    r"|\b[\w-]+\.(?:ts|js|py|rs|go|java|cpp|c|h|css|html|json|yaml|yml|toml|md|txt|csv|xml"
    r"|sql|sh|bash|zsh|log|conf|cfg|env|lock|dockerfile|makefile)\b",
    re.IGNORECASE,
)
URL_PATTERNS = re.compile(
    r"https?://[^\s]+|(?:www\.)[^\s]+|\b(?:x\.com|twitter\.com|github\.com|gmail\.com"
    r"|linkedin\.com|reddit\.com|facebook\.com|youtube\.com|amazon\.com|stackoverflow\.com)\b",
    re.IGNORECASE,
)
WEB_SIGNALS = re.compile(
    r"\b(website|webpage|web\s*page|browser|tab|bookmark|url|link|search\s+(?:for|about)"
    r"|latest\s+news|current\s+(?:price|weather|time|status|version)"
    r"|how\s+much\s+(?:does|is|are)|what(?:'s|\s+is)\s+the\s+(?:price|cost|weather|time|status)"
    r"|news\s+about|trending|stock\s+price|score|schedule|hours|directions|map"
    r"|near\s+(?:me|here)|restaurants?|stores?|shops?|popup|pop-?up|banner"
    r"|cookie\s*(?:banner|consent|notice)|overlay|dialog|modal|sidebar|menu|dropdown"
    r"|tooltip|notification\s*(?:bar|banner)|captcha|ads?|advertisement|blocker)\b",
    re.IGNORECASE,
)
SYSTEM_SIGNALS = re.compile(
    r"\b(file|folder|directory|package|process|port|server|terminal|shell|command|script"
    r"|code|function|class|variable|module|component|project|repo|repository|branch|merge"
    r"|rebase|stash|diff|log|debug|error|warning|stack\s*trace|crash|memory|cpu|disk"
    r"|permission|windows?|desktop|clipboard|notification|battery|volume|brightness|wifi"
    r"|bluetooth|uptime|hostname|kernel|swap|pid|daemon|cron|service|systemctl|journalctl)\b",
    re.IGNORECASE,
)
DOCUMENT_SIGNALS = re.compile(
    r"\b(generate|create|make|build|write)\s+(a\s+)?(document|report|spreadsheet|pdf|docx?"
    r"|xlsx?|csv|presentation|resume|proposal|whitepaper|letter|invoice|receipt)\b",
    re.IGNORECASE,
)
MEDIA_SIGNALS = re.compile(
    r"\b(image|picture|photo|screenshot|show\s+me|what\s+does\s+.+\s+look\s+like)\b",
    re.IGNORECASE,
)
NOTIFICATION_SIGNALS = re.compile(
    r"\b(notifications?|messages?|inbox|dms?|direct\s+messages?|mentions?|timeline|feed"
    r"|emails?|unread)\b",
    re.IGNORECASE,
)
DEMONSTRATIVE_SIGNALS = re.compile(
    r"\b(that|this|the)\s+(popup|pop-?up|button|link|banner|dialog|modal|overlay|element"
    r"|thing|icon|image|box|card|panel|form|field|input|menu|dropdown|sidebar|notification"
    r"|ad|window|tab|page)\b",
    re.IGNORECASE,
)
SHOPPING_SIGNALS = re.compile(
    r"\b(buy|purchase|order|price|cost|cheap|expensive|deal|discount|coupon|sale"
    r"|compare\s+prices?|under\s+\$|best\s+.+\s+for)\b",
    re.IGNORECASE,
)


@dataclass
class Signals:
    urls: list[str]
    url_host: str | None
    url_path: str | None
    action_verbs: set[str]
    words: set[str]
    has_file_path: bool
    known_host_archetype: str | None
    tool_keywords: set[str]
    has_question: bool
    has_recency: bool
    has_doc_keywords: bool
    message_length: int

    @property
    def has_url(self) -> bool:
        return bool(self.urls)


@dataclass
class Classification:
    cache_key: CacheKey
    score: float
    tier: ExecutionTier
    params: dict[str, str] = field(default_factory=dict)
    hint: str = ""

    @property
    def archetype(self) -> str:
        return self.cache_key.archetype


def _host(url: str) -> str | None:
    host = urlparse(url).hostname
    if not host:
        return None
    return host[4:] if host.startswith("www.") else host


def _known_host(host: str) -> str | None:
    if host in HOST_ARCHETYPES:
        return HOST_ARCHETYPES[host]
    parts = host.split(".")
    if len(parts) > 2:
        return HOST_ARCHETYPES.get(".".join(parts[-2:]))
    return None


def extract_signals(message: str, current_url: str | None = None) -> Signals:
    lower = message.lower()
    raw_words = lower.split()
    words = {w for w in (re.sub(r"[^a-z0-9]", "", w) for w in raw_words) if w}

    urls = URL_RE.findall(message)
    domain_hits = DOMAIN_RE.findall(message)
    if domain_hits and not EMAIL_RE.search(message):
        for hit in domain_hits:
            if not any(hit in u for u in urls):
                urls.append(f"https://{hit}")
    if not urls and current_url:
        urls.append(current_url)

    url_host = _host(urls[0]) if urls else None
    url_path = (urlparse(urls[0]).path or "/") if urls else None

    return Signals(
        urls=urls,
        url_host=url_host,
        url_path=url_path,
        action_verbs={v for v in (re.sub(r"[^a-z]", "", w) for w in raw_words) if v in ACTION_VERBS},
        words=words,
        has_file_path=bool(FILE_PATH_RE.search(message)),
        known_host_archetype=_known_host(url_host) if url_host else None,
        tool_keywords={kw for kw in TOOL_KEYWORDS if kw in lower},
        has_question=message.strip().endswith("?"),
        has_recency=any(w in lower for w in RECENCY_WORDS),
        has_doc_keywords=any(kw in lower for kw in DOC_KEYWORDS),
        message_length=len(message),
    )


# ════════════════════════════════════════════════════════════
# SCORERS
# ════════════════════════════════════════════════════════════


def _score_media_extract(s: Signals) -> tuple[float, dict[str, str]]:
    params: dict[str, str] = {}
    if s.urls:
        params["url"] = s.urls[0]
    for key, directory in OUTPUT_DIRS:
        if key in s.words:
            params["output_dir"] = directory
            break

    has_verb = bool(s.action_verbs & {"download", "extract", "save"})
    has_noun = bool(s.words & MEDIA_NOUNS)
    score = 0.0
    if s.known_host_archetype == "media-extract" and has_verb:
        score = 0.95
    elif s.known_host_archetype == "media-extract":
        score = 0.6
    elif has_verb and (s.has_url or has_noun):
        score = 0.8
    elif has_noun and s.has_url:
        score = 0.7

    if (
        s.url_host and s.url_host.endswith("instagram.com") and s.url_path
        and re.match(r"^/(reel|reels|p|tv|stories)/", s.url_path, re.IGNORECASE)
        and has_verb
    ):
        score = max(score, 0.9)
    if s.tool_keywords & {"yt-dlp", "youtube-dl"}:
        score = max(score, 0.9)
    return score, params


def _score_web_search(s: Signals) -> tuple[float, dict[str, str]]:
    score = 0.0
    if s.has_question and not s.has_url and s.message_length > 20:
        score = 0.7
    elif s.action_verbs & {"search", "find", "look"} and not s.has_url:
        score = 0.75
    elif s.has_question and not s.has_url:
        score = 0.5
    if s.has_file_path:
        score *= 0.5
    return score, {}


def _score_page_read(s: Signals) -> tuple[float, dict[str, str]]:
    params = {"url": s.urls[0]} if s.urls else {}
    has_read = bool(s.action_verbs & {"read", "summarize", "extract", "check"})
    score = 0.0
    if s.has_url and has_read and "download" not in s.action_verbs:
        score = 0.85
    elif s.has_url and s.known_host_archetype == "page-read":
        score = 0.7
    elif s.has_url and not s.action_verbs:
        score = 0.6
    return score, params


def _score_file_op(s: Signals) -> tuple[float, dict[str, str]]:
    has_verb = bool(s.action_verbs & {"read", "write", "edit", "create", "delete", "remove"})
    if s.has_file_path and has_verb:
        return 0.85, {}
    if s.has_file_path:
        return 0.5, {}
    return 0.0, {}


def _score_news_lookup(s: Signals) -> tuple[float, dict[str, str]]:
    if s.has_recency and s.has_question and not s.has_url:
        return 0.75, {}
    if s.has_recency and not s.has_url:
        return 0.55, {}
    return 0.0, {}


def _score_shopping(s: Signals) -> tuple[float, dict[str, str]]:
    if s.action_verbs & {"buy", "price"} and not s.has_url:
        return 0.7, {}
    if s.known_host_archetype == "shopping":
        return 0.6, {}
    return 0.0, {}


def _score_multi_page(s: Signals) -> tuple[float, dict[str, str]]:
    params = {"url": s.urls[0]} if s.urls else {}
    score = 0.75 if len(s.urls) >= 2 else 0.0
    if "compare" in s.action_verbs and len(s.urls) >= 2:
        score = 0.85
    elif "compare" in s.action_verbs:
        score = 0.6
    return score, params


def _score_doc_create(s: Signals) -> tuple[float, dict[str, str]]:
    has_verb = bool(s.action_verbs & {"create", "generate", "make", "build", "write"})
    if s.has_doc_keywords and has_verb:
        return 0.85, {}
    if s.has_doc_keywords:
        return 0.4, {}
    return 0.0, {}


def _score_site_interact(s: Signals) -> tuple[float, dict[str, str]]:
    params = {"url": s.urls[0]} if s.urls else {}
    has_verb = bool(
        s.action_verbs & {"click", "type", "post", "tweet", "login", "sign", "send", "reply", "like"}
    )
    score = 0.0
    if s.has_url and has_verb:
        score = 0.8
    elif s.known_host_archetype == "site-interact" and has_verb:
        score = 0.8
    elif s.known_host_archetype == "site-interact":
        score = 0.5
    return score, params


SCORERS: list[tuple[str, Callable[[Signals], tuple[float, dict[str, str]]]]] = [
    ("media-extract", _score_media_extract),
    ("web-search", _score_web_search),
    ("page-read", _score_page_read),
    ("file-op", _score_file_op),
    ("news-lookup", _score_news_lookup),
    ("shopping", _score_shopping),
    ("multi-page", _score_multi_page),
    ("doc-create", _score_doc_create),
    ("site-interact", _score_site_interact),
]


# ════════════════════════════════════════════════════════════
# TIERS, HINTS, TOOL CLASS
# ════════════════════════════════════════════════════════════


def _tier(archetype: str, s: Signals) -> ExecutionTier:
    if archetype == "media-extract":
        host = s.url_host or ""
        root = ".".join(host.split(".")[-2:])
        if host in FAST_PATH_HOSTS or root in FAST_PATH_HOSTS:
            return "deterministic"
        return "llm-default"
    if archetype in ("web-search", "news-lookup", "shopping", "file-op", "doc-create"):
        return "api-only"
    if archetype in ("page-read", "multi-page"):
        return "browser-passive"
    if archetype == "site-interact":
        return "browser-active"
    return "llm-default"


def _hint(archetype: str, params: dict[str, str]) -> str:
    url = params.get("url")
    hints = {
        "media-extract": (
            f"Task: download media. Use exec_command with yt-dlp on {url or 'the URL in the task'}. "
            "Do not re-encode."
        ),
        "web-search": "Task: web search. Use web_search with a concise query; fetch a result only if snippets lack the answer.",
        "page-read": f"Task: read a page. Use web_fetch on {url or 'the URL'} once, then answer.",
        "file-op": "Task: local file operation. Use read_file, write_file, edit_file or exec_command.",
        "news-lookup": "Task: recent news. Use web_search with a focused, time-bounded query.",
        "shopping": "Task: price lookup. Use web_search for the product and report prices found.",
        "multi-page": "Task: compare pages. Fetch each URL with web_fetch, then compare.",
        "doc-create": "Task: create a document. Write it to the workspace with write_file.",
        "site-interact": f"Task: site interaction at {url or 'the site'}. Fetch the page first and report what you can do.",
    }
    return hints.get(archetype, "")


def classify_tool_class(message: str) -> ToolClass:
    """Which tool family a goal needs: 'browser', 'local' or 'all'."""
    has_browser = any(
        p.search(message)
        for p in (WEB_SIGNALS, URL_PATTERNS, SHOPPING_SIGNALS, NOTIFICATION_SIGNALS,
                  MEDIA_SIGNALS, DEMONSTRATIVE_SIGNALS)
    )
    has_local = any(p.search(message) for p in (FILE_PATTERNS, SYSTEM_SIGNALS, DOCUMENT_SIGNALS))
    if has_browser and not has_local:
        return "browser"
    if has_local and not has_browser:
        return "local"
    return "all"


def classify(goal: str, current_url: str | None = None) -> Classification:
    """Classify ``goal`` into an archetype cache key with score, tier and params."""
    signals = extract_signals(goal, current_url)
    tool_class = classify_tool_class(goal)

    best_name, best_score, best_params = "unknown", 0.0, {}
    for name, scorer in SCORERS:
        score, params = scorer(signals)
        if score > best_score:
            best_name, best_score, best_params = name, score, params

    if best_score < SCORE_THRESHOLD:
        logger.debug("archetype=unknown score=0")
        return Classification(
            cache_key=CacheKey(archetype="unknown", primary_host=None, tool_class=tool_class),
            score=0.0,
            tier="llm-default",
        )

    tier = _tier(best_name, signals)
    logger.debug(f"archetype={best_name} score={best_score:.2f} tier={tier}")
    return Classification(
        cache_key=CacheKey(archetype=best_name, primary_host=signals.url_host, tool_class=tool_class),
        score=best_score,
        tier=tier,
        params=best_params,
        hint=_hint(best_name, best_params),
    )
