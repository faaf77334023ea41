"""Admin-managed escalation conditions used to configure the classifier."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from pulsecheck.models.base import DocumentModel, utc_now
from pulsecheck.models.escalation import EscalationCategory, EscalationTier


class EscalationConditionInput(DocumentModel):
    """Fields an admin may set when creating a condition."""

    tier: EscalationTier
    category: EscalationCategory = EscalationCategory.GENERAL
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    example_phrases: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    is_active: bool = True
    priority: int = 0  # Higher = more weight in classification


class EscalationConditionUpdate(DocumentModel):
    """Partial update; unset fields are left untouched."""

    tier: Optional[EscalationTier] = None
    category: Optional[EscalationCategory] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    example_phrases: Optional[list[str]] = None
    keywords: Optional[list[str]] = None
    is_active: Optional[bool] = None
    priority: Optional[int] = None


class EscalationCondition(EscalationConditionInput):
    id: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    created_by: str = ""

    @property
    def uniqueness_key(self) -> str:
        return f"{int(self.tier)}#{self.category.value}"

    def format_for_prompt(self) -> str:
        examples = ", ".join(f'"{p}"' for p in self.example_phrases[:3]) or "N/A"
        keywords = ", ".join(self.keywords) or "N/A"
        return (
            f"- **{self.title}** ({self.category.value}): {self.description}\n"
            f"  Examples: {examples}\n"
            f"  Keywords: {keywords}"
        )
