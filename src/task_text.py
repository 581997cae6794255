"""Text heuristics shared by the detector adapters: task-name extraction and insight scraping."""

import re
from typing import Iterable, List, Tuple

UNKNOWN_TASK = "Unknown Task"

COMMON_UI_ELEMENTS = {
    "file", "edit", "view", "window", "help", "about", "preferences", "settings", "tools",
    "minimize", "close", "zoom", "back", "forward", "refresh", "stop", "home", "search",
    "menu", "go", "bookmarks", "history", "downloads", "extensions", "cancel", "ok", "yes",
    "no", "save", "open", "new", "exit",
}

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "from", "as", "is", "was", "are", "been", "be", "have", "has", "will", "would", "could",
    "should", "may", "might", "must", "can", "do", "does", "did",
}

TASK_INDICATORS = (
    "document", "file", "email", "message", "project", "task", "issue", "bug", "feature",
    "branch", "commit", "pull request", "analysis", "report", "presentation", "spreadsheet",
    "slide",
)

TASK_KEYWORDS = (
    "project", "task", "issue", "bug", "feature", "document", "file", "email", "message",
    "report", "analysis", "presentation", "meeting", "development", "design",
    "implementation", "testing", "review", "code", "database", "server", "client", "user",
    "system", "application",
)

GENERIC_TASK_NAMES = {"unknown task", "untitled", "document", "file"}

_FILE_EXTENSIONS = (".swift", ".py", ".js", ".ts", ".html", ".css", ".md", ".txt")
_TITLE_PREFIXES = ("Document:", "File:", "Untitled", "New")
_MAX_TASK_CHARS = 50

_INSIGHT_PATTERNS: Tuple[Tuple[str, "re.Pattern[str]", int], ...] = (
    ("url", re.compile(r"https?://[^\s]+"), 5),
    ("email", re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), 3),
    ("date", re.compile(r"\d{1,2}/\d{1,2}/\d{4}|\d{4}-\d{2}-\d{2}"), 3),
    ("phone", re.compile(r"\d{3}-\d{3}-\d{4}|\(\d{3}\)\s*\d{3}-\d{4}"), 2),
)


def is_common_ui_element(text: str) -> bool:
    return text.strip().lower() in COMMON_UI_ELEMENTS


def is_meaningful_task_name(name: str) -> bool:
    return name.strip().lower() not in GENERIC_TASK_NAMES and len(name.strip()) > 3


def clean_task_name(name: str) -> str:
    cleaned = name
    for ext in _FILE_EXTENSIONS:
        cleaned = cleaned.replace(ext, "")
    for prefix in _TITLE_PREFIXES:
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):]
    cleaned = cleaned.strip()[:_MAX_TASK_CHARS].strip()
    return cleaned or UNKNOWN_TASK


def task_from_content(content: str) -> str:
    """Pick the first task-looking line of accessibility content, else the first substantial line."""
    cleaned = content.replace("•", "").replace("—", "-").replace("–", "-").strip()
    lines = [line.strip() for line in cleaned.splitlines()]

    for line in lines:
        if len(line) < 3 or is_common_ui_element(line):
            continue
        lowered = line.lower()
        if any(indicator in lowered for indicator in TASK_INDICATORS):
            return clean_task_name(line)

    for line in lines:
        if len(line) > 5 and not is_common_ui_element(line):
            return clean_task_name(line)
    return UNKNOWN_TASK


def task_from_title(title: str) -> str:
    cleaned = title.strip()
    if not cleaned:
        return UNKNOWN_TASK
    # Browser chrome titles say nothing about the task.
    if any(marker in cleaned for marker in ("Google", "YouTube", "Safari", "Chrome")):
        return UNKNOWN_TASK
    return clean_task_name(cleaned)


def task_from_ocr_text(text: str) -> str:
    words = [
        word
        for word in re.sub(r"\s+", " ", text).strip().split(" ")
        if len(word) > 2 and not is_common_ui_element(word) and word.lower() not in STOP_WORDS
    ]
    task_words = [word for word in words if any(keyword in word.lower() for keyword in TASK_KEYWORDS)]
    if task_words:
        return clean_task_name(" ".join(task_words))
    if words:
        return clean_task_name(" ".join(words[:3]))
    return UNKNOWN_TASK


def extract_insights(text: str) -> List[Tuple[str, str]]:
    """URLs, e-mail addresses, dates and phone numbers visible in recognized text."""
    insights: List[Tuple[str, str]] = []
    for kind, pattern, limit in _INSIGHT_PATTERNS:
        for match in pattern.findall(text)[:limit]:
            insights.append((kind, match))
    return insights


def keep_recognized_fragments(fragments: Iterable[Tuple[str, float]]) -> List[Tuple[str, float]]:
    """Drop very short and UI-chrome fragments from OCR output."""
    return [
        (text.strip(), confidence)
        for text, confidence in fragments
        if len(text.strip()) >= 3 and not is_common_ui_element(text)
    ]
