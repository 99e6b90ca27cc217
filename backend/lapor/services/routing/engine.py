"""
Routing Engine

Pure classification: (title, description, category) -> department, priority
and a human-readable reason. Reads only the static tables in rules.py.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ...config import (
    ROUTING_DEFAULT_DEPARTMENT,
    ROUTING_DEFAULT_PRIORITY,
    ROUTING_MIN_KEYWORD_MATCHES,
)
from ...models.db_models import ReportCategory
from .rules import CATEGORY_DEPARTMENTS, DEPARTMENT_RULES, PRIORITY_RULES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutingDecision:
    department_code: str
    priority: int
    reason: str
    matched_keywords: List[str] = field(default_factory=list)
    fallback: bool = False


class RoutingEngine:
    """Keyword scoring over ordered rule tables."""

    def __init__(
        self,
        min_keyword_matches: int = ROUTING_MIN_KEYWORD_MATCHES,
        default_priority: int = ROUTING_DEFAULT_PRIORITY,
        default_department: str = ROUTING_DEFAULT_DEPARTMENT,
    ):
        self.min_keyword_matches = min_keyword_matches
        self.default_priority = default_priority
        self.default_department = default_department

    @staticmethod
    def _text(title: str, description: Optional[str]) -> str:
        return f"{title or ''} {description or ''}".lower()

    def score_departments(self, text: str) -> Tuple[Optional[str], List[str]]:
        """
        Best department by keyword hits.

        Strict > keeps the earliest department on a tie.
        Returns (code, matched_keywords); code is None when nothing matched.
        """
        best_code = None
        best_matches: List[str] = []

        for code, _name, keywords in DEPARTMENT_RULES:
            matches = [keyword for keyword in keywords if keyword in text]
            if len(matches) > len(best_matches):
                best_code = code
                best_matches = matches

        return best_code, best_matches

    def calculate_priority(self, text: str) -> int:
        for priority, keywords in PRIORITY_RULES:
            if any(keyword in text for keyword in keywords):
                return priority
        return self.default_priority

    def route(
        self,
        title: str,
        description: Optional[str],
        category: ReportCategory,
    ) -> RoutingDecision:
        text = self._text(title, description)
        priority = self.calculate_priority(text)
        code, matches = self.score_departments(text)

        if code is not None and len(matches) >= self.min_keyword_matches:
            return RoutingDecision(
                department_code=code,
                priority=priority,
                reason=f"Keyword match: {', '.join(matches[:3])}",
                matched_keywords=matches,
            )

        category = ReportCategory(category)
        mapped = CATEGORY_DEPARTMENTS.get(category)
        if mapped is not None:
            return RoutingDecision(
                department_code=mapped,
                priority=priority,
                reason=f"Category-based: {category.value}",
                fallback=True,
            )

        logger.warning(
            f"No keyword or category rule for category {category.value}, "
            f"using default department {self.default_department}"
        )
        return RoutingDecision(
            department_code=self.default_department,
            priority=priority,
            reason=f"Default department (category {category.value} has no mapping)",
            fallback=True,
        )

    def describe_rules(self) -> dict:
        """Read-only view of the tables for operators."""
        return {
            "departments": [
                {"code": code, "name": name, "keywords": list(keywords)}
                for code, name, keywords in DEPARTMENT_RULES
            ],
            "priorities": [
                {"priority": priority, "keywords": list(keywords)}
                for priority, keywords in PRIORITY_RULES
            ],
            "categoryFallback": {
                category.value: code for category, code in CATEGORY_DEPARTMENTS.items()
            },
            "defaultDepartment": self.default_department,
            "defaultPriority": self.default_priority,
            "minKeywordMatches": self.min_keyword_matches,
        }
