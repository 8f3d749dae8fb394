"""
Tree validation - check a parsed WBS tree for structural issues.

Parsing never fails, so problems in the input show up here instead:
duplicate codes, blank labels, levels that disagree with depth, and rows
that were reattached because their parent code was missing.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .models import WbsNode


class IssueSeverity(str, Enum):
    """Severity levels for validation issues."""
    ERROR = "error"      # Invalid state, must be fixed
    WARNING = "warning"  # Potential problem, should review
    INFO = "info"        # Informational, may be intentional


@dataclass
class ValidationIssue:
    """A single validation issue found in a tree."""
    severity: IssueSeverity
    message: str
    node_id: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = {
            "type": self.severity.value,
            "message": self.message
        }
        if self.node_id:
            result["node_id"] = self.node_id
        return result


def _is_code(node_id: str) -> bool:
    return all(part.isdigit() for part in node_id.split("."))


def validate_tree(root: WbsNode) -> list[ValidationIssue]:
    """
    Validate a tree and return a list of issues.

    Checks for:
    - Empty tree - INFO
    - Duplicate ids - ERROR
    - Blank labels - WARNING
    - Level not equal to parent level + 1 - ERROR
    - Minted ids for repeated codes ("1.2#2") - WARNING
    - Coded nodes not nested under their parent code (gaps) - WARNING
    """
    issues: list[ValidationIssue] = []

    if not root.children and root.virtual:
        issues.append(ValidationIssue(
            severity=IssueSeverity.INFO,
            message="Outline is empty"
        ))
        return issues

    seen: set[str] = set()
    stack: list[tuple[WbsNode, Optional[WbsNode]]] = [(root, None)]
    while stack:
        node, parent = stack.pop()
        stack.extend((child, node) for child in reversed(node.children))

        if node.id in seen:
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message=f"Duplicate id '{node.id}'",
                node_id=node.id
            ))
        seen.add(node.id)

        if node.virtual:
            continue

        if not node.label.strip():
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message="Node has an empty label",
                node_id=node.id
            ))

        if parent is not None and node.level != parent.level + 1:
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message=f"Level {node.level} does not follow parent level {parent.level}",
                node_id=node.id
            ))

        if "#" in node.id:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message=f"Code '{node.id.split('#')[0]}' appears more than once",
                node_id=node.id
            ))

        base = node.id.split("#")[0]
        if parent is not None and not parent.virtual and _is_code(base) and "." in base:
            expected = base.rsplit(".", 1)[0]
            parent_base = parent.id.split("#")[0]
            if _is_code(parent_base) and parent_base != expected:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    message=f"Parent code '{expected}' is missing; attached under '{parent_base}'",
                    node_id=node.id
                ))

    return issues
