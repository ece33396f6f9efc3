"""
Rebuild UI hierarchy dumps ("App UI hierarchy" attachments) into a tree.

The dump is one element per line, nested by indentation::

    Application, pid: 4242, label: 'Demo'
      Window (Main), {{0.0, 0.0}, {390.0, 844.0}}
        Button, identifier: "login", label: 'Log In'

Elements are kept in a flat list in encounter order; that position is the
element's permanent address. Parent and child links are indices into the
same list.
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import settings
from .exceptions import NotFoundError, UnexpectedOutputFormat, ValidationError
from .logger_config import get_logger
from .models import SlimUINode, UIElementNode

logger = get_logger(__name__)

_TYPE = re.compile(r"^(\w+)")
_QUOTED = re.compile(r'"([^"]*)"')
_PARENTHESES = re.compile(r"\(([^)]*)\)")
_PID = re.compile(r"pid:\s*(\d+)")
_FRAME = re.compile(r"\{\{([\d.-]+),\s*([\d.-]+)\},\s*\{([\d.-]+),\s*([\d.-]+)\}\}")
_IDENTIFIER = re.compile(r'identifier:\s*"([^"]*)"')
_SINGLE_QUOTED_LABEL = re.compile(r"label: '([^']+)'")


def parse_ui_element_line(line: str, indent_level: int) -> Optional[UIElementNode]:
    """Parse one stripped dump line. Returns None for blank lines."""
    if not line or not line.strip():
        return None

    type_match = _TYPE.match(line)
    quoted = _QUOTED.search(line)
    element = UIElementNode(
        type=type_match.group(1) if type_match else "unknown",
        label=quoted.group(1) if quoted else "",
        raw=line,
        indent_level=indent_level,
    )

    details = _PARENTHESES.search(line)
    if details:
        element.attributes["details"] = details.group(1)

    pid = _PID.search(line)
    if pid:
        element.attributes["processId"] = int(pid.group(1))

    frame = _FRAME.search(line)
    if frame:
        x, y, width, height = (float(value) for value in frame.groups())
        element.attributes["frame"] = {"x": x, "y": y, "width": width, "height": height}

    identifier = _IDENTIFIER.search(line)
    if identifier:
        element.attributes["identifier"] = identifier.group(1)

    return element


class UIHierarchy:
    """Flat element list plus the index of the root element."""

    def __init__(self, elements: Optional[List[UIElementNode]] = None, root_index: Optional[int] = None, total_lines: int = 0):
        self.elements: List[UIElementNode] = elements or []
        self.root_index = root_index
        self.total_lines = total_lines

    def __len__(self) -> int:
        return len(self.elements)

    @property
    def root(self) -> Optional[UIElementNode]:
        return self.elements[self.root_index] if self.root_index is not None else None

    def children(self, element: UIElementNode) -> List[UIElementNode]:
        return [self.elements[i] for i in element.child_indices]

    def element_dict(self, element: UIElementNode) -> Dict[str, Any]:
        return {
            "index": element.flat_index,
            "type": element.type,
            "label": element.label,
            "raw": element.raw,
            "indentLevel": element.indent_level,
            "attributes": element.attributes,
            "parent": element.parent,
            "parentIndex": element.parent_index,
            "childIndices": list(element.child_indices),
        }

    def _nested_dict(self, element: UIElementNode) -> Dict[str, Any]:
        data = self.element_dict(element)
        data["children"] = [self._nested_dict(child) for child in self.children(element)]
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Full form: nested ``rootElement`` plus the addressable ``flatElements``."""
        return {
            "parseMethod": "indented_text",
            "totalLines": self.total_lines,
            "rootElement": self._nested_dict(self.root) if self.root else None,
            "flatElements": [self.element_dict(element) for element in self.elements],
        }

    def slim(self) -> Optional[SlimUINode]:
        """Compact projection keeping type, label and the flat index of every element."""

        def convert(element: UIElementNode) -> SlimUINode:
            label_match = _SINGLE_QUOTED_LABEL.search(element.raw)
            return SlimUINode(
                type=element.type,
                label=label_match.group(1) if label_match else (element.label or None),
                index=element.flat_index,
                children=[convert(child) for child in self.children(element)],
            )

        return convert(self.root) if self.root else None

    def slim_dict(self) -> Dict[str, Any]:
        slim_root = self.slim()
        return {
            "parseMethod": "slim_ui_tree",
            "originalElementCount": len(self.elements),
            "rootElement": slim_root.to_dict() if slim_root else None,
        }


def parse_indented_hierarchy(text: str) -> UIHierarchy:
    """Build a :class:`UIHierarchy` from an indented dump.

    Each line closes every open element indented at least as deep as itself,
    then becomes a child of whatever is left open, or the root when nothing is.
    """
    lines = text.split("\n")
    hierarchy = UIHierarchy(total_lines=len(lines))
    stack: List[UIElementNode] = []

    for line in lines:
        if not line.strip():
            continue
        indent_level = len(line) - len(line.lstrip())
        element = parse_ui_element_line(line.strip(), indent_level)
        if element is None:
            continue

        while stack and stack[-1].indent_level >= indent_level:
            stack.pop()

        element.flat_index = len(hierarchy.elements)
        if not stack:
            hierarchy.root_index = element.flat_index
        else:
            parent = stack[-1]
            parent.child_indices.append(element.flat_index)
            element.parent = parent.type or "unknown"
            element.parent_index = parent.flat_index

        stack.append(element)
        hierarchy.elements.append(element)

    return hierarchy


def load_hierarchy_text(path: str) -> UIHierarchy:
    with open(path, encoding="utf-8", errors="replace") as f:
        return parse_indented_hierarchy(f.read())


def safe_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", name)


def save_hierarchy_json(data: Dict[str, Any], filename: str, directory: Optional[str] = None) -> str:
    """Write compact JSON next to other exported attachments and return its path."""
    target_dir = Path(directory or settings.attachment_export_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    json_path = target_dir / filename
    json_path.write_text(json.dumps(data, separators=(",", ":")), encoding="utf-8")
    logger.info(f"Saved UI hierarchy JSON to: {json_path}")
    return str(json_path)


def get_ui_element(json_path: str, index: int, include_children: bool = False) -> Dict[str, Any]:
    """Look up one element of a saved full hierarchy by flat index.

    Raises:
        ValidationError: the file does not exist.
        UnexpectedOutputFormat: the file is not hierarchy JSON.
        NotFoundError: ``index`` is outside the flat element list.
    """
    if not os.path.exists(json_path):
        raise ValidationError(f"UI hierarchy JSON file not found: {json_path}")

    try:
        with open(json_path, encoding="utf-8") as f:
            data = json.load(f)
    except ValueError as e:
        raise UnexpectedOutputFormat(f"Failed to read UI hierarchy JSON: {e}") from e

    flat = data.get("flatElements") if isinstance(data, dict) else None
    if not isinstance(flat, list):
        raise UnexpectedOutputFormat(f"{json_path} does not contain flatElements")

    if index < 0 or index >= len(flat):
        raise NotFoundError(
            f"Element index {index} out of range. Available indices: 0-{len(flat) - 1}",
            requested=str(index),
        )

    element = flat[index]
    result = {key: element.get(key) for key in ("type", "label", "raw", "indentLevel")}
    result["index"] = index
    result["attributes"] = element.get("attributes") or {}

    child_indices = element.get("childIndices") or []
    if include_children:
        result["children"] = [flat[i] for i in child_indices if 0 <= i < len(flat)]
    elif child_indices:
        result["childrenCount"] = len(child_indices)
        result["hasChildren"] = True

    if element.get("parent"):
        result["parent"] = element["parent"]
    return result
