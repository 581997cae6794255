import re
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional, Sequence, Tuple

from constants import UNKNOWN_CATEGORY

Classification = Tuple[str, float]


class Classifier(ABC):
    """Maps observed text to ``(category, local_confidence)``."""

    @abstractmethod
    def classify(self, text: str) -> Classification:
        pass


# (category, score, keywords) in descending precedence. Source file extensions count as
# coding keywords so editor titles like "auth.py - api" classify.
DEFAULT_KEYWORD_RULES: Tuple[Tuple[str, float, Tuple[str, ...]], ...] = (
    (
        "coding",
        0.9,
        ("func", "def", "class", "import", "return", "py", "swift", "js", "ts", "rs", "java", "kt", "cpp"),
    ),
    ("communication", 0.8, ("email", "send", "reply", "inbox")),
    ("planning", 0.8, ("meeting", "agenda", "schedule", "calendar")),
    ("writing", 0.7, ("write", "edit", "draft")),
    ("research", 0.7, ("research", "study", "learn", "docs", "documentation")),
    ("browsing", 0.6, ("browse", "search", "web")),
)

DEFAULT_APP_CATEGORIES: Dict[str, str] = {
    "com.apple.Terminal": "coding",
    "com.googlecode.iterm2": "coding",
    "com.microsoft.VSCode": "coding",
    "com.apple.dt.Xcode": "coding",
    "com.jetbrains.intellij": "coding",
    "com.jetbrains.pycharm": "coding",
    "com.apple.finder": "file_management",
    "com.apple.Safari": "browsing",
    "com.google.Chrome": "browsing",
    "org.mozilla.firefox": "browsing",
    "com.apple.mail": "communication",
    "com.hnc.Discord": "communication",
    "com.tinyspeck.slackmacgap": "communication",
    "com.apple.TextEdit": "writing",
    "com.apple.Notes": "writing",
    "com.apple.iCal": "planning",
    "com.apple.reminders": "planning",
}


class KeywordClassifier(Classifier):
    """Whole-word keyword scoring; the highest scoring rule wins, earlier rules on ties."""

    def __init__(
        self,
        rules: Sequence[Tuple[str, float, Sequence[str]]] = DEFAULT_KEYWORD_RULES,
        fallback: Classification = (UNKNOWN_CATEGORY, 0.3),
    ) -> None:
        self.fallback = fallback
        self._rules = [
            (category, score, re.compile(r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b", re.IGNORECASE))
            for category, score, keywords in rules
        ]

    def classify(self, text: str) -> Classification:
        best: Optional[Classification] = None
        for category, score, pattern in self._rules:
            if pattern.search(text) and (best is None or score > best[1]):
                best = (category, score)
        return best or self.fallback


class AppCategoryClassifier(Classifier):
    """Categorizes an application identity (bundle id or app name)."""

    def __init__(
        self,
        categories: Mapping[str, str] = DEFAULT_APP_CATEGORIES,
        fallback: Classification = ("other", 0.5),
    ) -> None:
        self.categories = {key.lower(): value for key, value in categories.items()}
        self.fallback = fallback

    def classify(self, text: str) -> Classification:
        key = text.strip().lower()
        category = self.categories.get(key)
        if category:
            return category, 1.0
        return self.fallback
