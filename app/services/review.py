"""
In-memory accept/reject state over a candidate change set.
Pure and synchronous: every read recomputes from the candidate list and the flags.
"""
import math
from collections import OrderedDict
from typing import Dict, List, Sequence

from app.config import settings
from app.models.resume import ChangeDetail, ReviewSummary


class ChangeReviewState:
    def __init__(
        self,
        changes: Sequence[ChangeDetail],
        cost_per_page: float = settings.COST_PER_IMAGE_GENERATION,
        chars_per_token: int = settings.CHARS_PER_TOKEN,
    ):
        self.changes: List[ChangeDetail] = list(changes)
        self.cost_per_page = cost_per_page
        self.chars_per_token = chars_per_token
        # Every candidate starts applied
        self.applied: Dict[str, bool] = {c.id: True for c in self.changes}

    def is_applied(self, change_id: str) -> bool:
        return self.applied[change_id]

    def toggle(self, change_id: str) -> bool:
        if change_id not in self.applied:
            raise KeyError(change_id)
        self.applied[change_id] = not self.applied[change_id]
        return self.applied[change_id]

    def set_section(self, section: str, apply: bool) -> int:
        """Accept or reject every change in a section; returns how many changes matched."""
        matched = [c.id for c in self.changes if c.section == section]
        if not matched:
            raise KeyError(section)
        for change_id in matched:
            self.applied[change_id] = apply
        return len(matched)

    def accept_section(self, section: str) -> int:
        return self.set_section(section, True)

    def reject_section(self, section: str) -> int:
        return self.set_section(section, False)

    def grouped_by_section(self) -> "OrderedDict[str, List[ChangeDetail]]":
        groups: "OrderedDict[str, List[ChangeDetail]]" = OrderedDict()
        for change in self.changes:
            groups.setdefault(change.section, []).append(change)
        return groups

    def applied_changes(self) -> List[ChangeDetail]:
        return [c for c in self.changes if self.applied[c.id]]

    def summary(self) -> ReviewSummary:
        applied = self.applied_changes()
        pages = {c.page_index for c in applied}
        total_chars = sum(len(c.new_text) for c in applied)
        return ReviewSummary(
            applied_changes=applied,
            affected_page_count=len(pages),
            approx_input_tokens=math.floor(total_chars / self.chars_per_token + 0.5),
            estimated_cost=len(pages) * self.cost_per_page,
            unverified_change_count=sum(1 for c in self.changes if c.original_text_found is False),
        )
