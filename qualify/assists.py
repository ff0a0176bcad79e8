"""
Assist Grouper — collects Edits into AssistGroups keyed by group label.
"""

from typing import Dict, List

from qualify.model import AssistGroup, AssistId, Edit
from qualify.ranges import SourceRange


class Assists:
    """Per-request accumulator; groups keep the order they were opened in."""

    def __init__(self, assist_id: AssistId):
        self.assist_id = assist_id
        self._groups: Dict[str, List[Edit]] = {}

    def add_group(self, group_label: str, label: str, target: SourceRange, replacement: str):
        self._groups.setdefault(group_label, []).append(Edit(target, replacement, label))

    def __len__(self):
        return sum(len(edits) for edits in self._groups.values())

    def finish(self) -> List[AssistGroup]:
        return [AssistGroup(self.assist_id, label, tuple(edits))
                for label, edits in self._groups.items()]
