"""Data types shared by the orchestration and result-analysis layers.

Tree-shaped models (test results, UI hierarchies) are stored as arenas: a flat
list of nodes linked by integer indices. A node never holds a reference to its
parent object, only the parent's index.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


@dataclass
class TextContent:
    """A single text block of tool output."""

    text: str
    type: str = "text"

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "text": self.text}


@dataclass
class ToolResult:
    """Output envelope returned by every high-level operation."""

    content: List[TextContent] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def text(cls, text: str, is_error: bool = False) -> "ToolResult":
        return cls(content=[TextContent(text=text)], is_error=is_error)

    @property
    def first_text(self) -> str:
        return self.content[0].text if self.content else ""

    def to_dict(self) -> Dict[str, Any]:
        return {"content": [block.to_dict() for block in self.content], "isError": self.is_error}


class OrchestrationState(str, Enum):
    """States an orchestrated action moves through."""

    IDLE = "idle"
    SCHEME_SET = "scheme_set"
    DESTINATION_SET = "destination_set"
    ACTION_TRIGGERED = "action_triggered"
    AWAITING_ARTIFACT = "awaiting_artifact"
    AWAITING_STABILITY = "awaiting_stability"
    PARSED = "parsed"
    SUCCESS = "success"
    WARNINGS = "warnings"
    FAILURE = "failure"
    TIMED_OUT = "timed_out"


class BuildOutcome(str, Enum):
    SUCCESS = "success"
    WARNINGS = "warnings"
    FAILURE = "failure"
    TIMED_OUT = "timed_out"


@dataclass
class BuildLogInfo:
    """A build log as seen during one polling iteration. Never cached across iterations."""

    path: str
    modified_time: float

    @property
    def modified_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.modified_time)


@dataclass
class ResultBundleInfo:
    path: str
    modified_time: float


@dataclass
class ParsedBuildResults:
    """Decoded build issues.

    ``errors`` and ``warnings`` are de-duplicated, order-preserving lists of
    ``location: title`` strings. ``decoder_failure`` marks a synthetic result
    describing a decoder problem rather than real build issues.
    """

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    build_status: Optional[str] = None
    decoder_failure: bool = False

    @property
    def outcome(self) -> BuildOutcome:
        if self.errors:
            return BuildOutcome.FAILURE
        if self.warnings:
            return BuildOutcome.WARNINGS
        return BuildOutcome.SUCCESS


@dataclass
class BuildReport:
    """Classified outcome of a build or run."""

    outcome: BuildOutcome
    results: Optional[ParsedBuildResults] = None
    log_path: Optional[str] = None
    message: str = ""


class TestNodeType(str, Enum):
    SUITE = "suite"
    CASE = "case"
    OTHER = "other"


CASE_NODE_TYPES = {"Test Case"}
SUITE_NODE_TYPES = {"Test Suite", "Test Target", "Test Plan", "Unit test bundle", "UI test bundle"}


@dataclass
class TestNode:
    """One node of a test-result tree.

    ``raw_type`` keeps the query tool's node type string ("Test Case",
    "Failure Message", ...); ``node_type`` is the coarse classification.
    """

    __test__ = False  # not a pytest test class

    name: str
    node_type: TestNodeType
    raw_type: str
    result: str = ""
    node_identifier: Optional[str] = None
    duration: Optional[str] = None
    duration_seconds: Optional[float] = None
    index: int = 0
    parent_index: Optional[int] = None
    child_indices: List[int] = field(default_factory=list)

    @property
    def is_case(self) -> bool:
        return self.node_type is TestNodeType.CASE


@dataclass
class TestTree:
    """Arena of test nodes.

    ``roots`` holds the indices of top-level nodes as returned by the query
    tool; ``cases`` is the stable pre-order list of test-case indices and is
    the canonical index addressing scheme.
    """

    __test__ = False

    nodes: List[TestNode] = field(default_factory=list)
    roots: List[int] = field(default_factory=list)

    def children(self, node: TestNode) -> List[TestNode]:
        return [self.nodes[i] for i in node.child_indices]

    def parent(self, node: TestNode) -> Optional[TestNode]:
        return self.nodes[node.parent_index] if node.parent_index is not None else None

    def walk(self) -> Iterator[TestNode]:
        """Pre-order traversal over every node."""
        stack = list(reversed(self.roots))
        while stack:
            node = self.nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.child_indices))

    def cases(self) -> List[TestNode]:
        return [node for node in self.walk() if node.is_case]


@dataclass
class TestAttachment:
    """Canonical attachment record, normalized from whichever field names the tool emitted."""

    __test__ = False

    name: str = ""
    filename: str = ""
    type_identifier: str = ""
    payload_id: Optional[str] = None
    timestamp: Optional[float] = None
    size: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.name or self.filename or "unnamed"


@dataclass
class UIElementNode:
    """One element of a UI hierarchy dump. ``parent`` is the parent's type name, never the object."""

    type: str
    label: str
    raw: str
    indent_level: int
    attributes: Dict[str, Any] = field(default_factory=dict)
    flat_index: int = 0
    parent: Optional[str] = None
    parent_index: Optional[int] = None
    child_indices: List[int] = field(default_factory=list)


@dataclass
class SlimUINode:
    type: str
    label: Optional[str]
    index: int
    children: List["SlimUINode"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"t": self.type, "j": self.index}
        if self.label:
            data["l"] = self.label
        if self.children:
            data["c"] = [child.to_dict() for child in self.children]
        return data


@dataclass
class TestResultsAnalysis:
    __test__ = False

    summary: Dict[str, Any]
    total_tests: int
    passed_tests: int
    failed_tests: int
    skipped_tests: int
    pass_rate: float
    duration: str

    @property
    def result(self) -> str:
        return str(self.summary.get("result", "unknown"))


@dataclass
class ScreenshotSelection:
    """Outcome of choosing an image for a requested test timestamp."""

    path: str
    source: str  # "video" or "image"
    attachment: TestAttachment
    delta: Optional[float] = None
    heuristic: bool = False
