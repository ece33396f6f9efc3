"""
Attachment classification and screenshot selection.

Screenshots come from one of two places: a frame pulled out of a recorded
video at the requested offset, or the still image recorded closest to that
offset. Attachments without any timing information fall back to an
order-based policy that callers may replace.
"""

import os
import re
import time
from typing import Any, List, Optional, Sequence, Tuple

from .config import settings
from .exceptions import AutomationTimeoutError, ExternalToolFailure, NotFoundError, ValidationError
from .logger_config import get_logger
from .models import ScreenshotSelection, TestAttachment, TestNode
from .utils import CommandExecutor

UI_HIERARCHY_MARKER = "App UI hierarchy"
VIDEO_TYPE_MARKERS = ("mp4", "quicktime", "public.mpeg-4")
VIDEO_EXTENSIONS = (".mp4", ".mov")
IMAGE_TYPE_MARKERS = ("png", "jpeg")
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg")

_NAME_TIMESTAMP = re.compile(r"t\s*=\s*([\d.]+)s")


def is_video(attachment: TestAttachment) -> bool:
    type_id = attachment.type_identifier.lower()
    filename = (attachment.filename or attachment.name).lower()
    return any(marker in type_id for marker in VIDEO_TYPE_MARKERS) or filename.endswith(VIDEO_EXTENSIONS)


def is_image(attachment: TestAttachment) -> bool:
    type_id = attachment.type_identifier.lower()
    filename = (attachment.filename or attachment.name).lower()
    return any(marker in type_id for marker in IMAGE_TYPE_MARKERS) or filename.endswith(IMAGE_EXTENSIONS)


def is_ui_hierarchy(attachment: TestAttachment) -> bool:
    return UI_HIERARCHY_MARKER in attachment.display_name


def attachment_time(attachment: TestAttachment) -> Optional[float]:
    """The attachment's timestamp, or a ``t = <n>s`` value embedded in its name."""
    if attachment.timestamp is not None:
        return attachment.timestamp
    match = _NAME_TIMESTAMP.search(attachment.name or "")
    if match:
        try:
            return float(match.group(1))
        except ValueError:
            return None
    return None


class OrderHeuristicPolicy:
    """Pick the last attachment for late requests and the first otherwise.

    Only used when no candidate carries a timestamp. "Late" means strictly
    above ``threshold`` seconds. This is a guess about test structure, not
    a guarantee that the chosen attachment matches the requested moment.
    """

    def __init__(self, threshold: Optional[float] = None):
        self.threshold = threshold if threshold is not None else settings.screenshot_order_threshold

    def choose(self, attachments: Sequence[TestAttachment], target: float) -> TestAttachment:
        if target > self.threshold and len(attachments) >= 2:
            return attachments[-1]
        return attachments[0]


def select_closest(
    attachments: Sequence[TestAttachment],
    target: float,
    policy: Optional[OrderHeuristicPolicy] = None,
    logger: Any = None,
) -> Optional[Tuple[TestAttachment, Optional[float], bool]]:
    """Choose the attachment nearest to ``target``.

    Returns ``(attachment, delta, heuristic)`` where ``delta`` is
    ``attachment_time - target`` (None when the order policy decided) and
    ``heuristic`` tells whether the order policy was used. The first candidate
    wins ties. Returns None for an empty list.
    """
    log = logger or get_logger(__name__)
    if not attachments:
        return None

    best: Optional[TestAttachment] = None
    best_delta: Optional[float] = None
    for attachment in attachments:
        when = attachment_time(attachment)
        if when is None:
            continue
        delta = when - target
        if best_delta is None or abs(delta) < abs(best_delta):
            best, best_delta = attachment, delta

    if best is not None:
        log.debug(f"Selected '{best.display_name}' at delta {best_delta:+.2f}s from {target}s")
        return best, best_delta, False

    chosen = (policy or OrderHeuristicPolicy()).choose(attachments, target)
    log.info(f"No timestamps on {len(attachments)} attachments; selected '{chosen.display_name}' by order heuristic")
    return chosen, None, True


class FrameExtractor:
    """Pulls a single frame out of a video with ffmpeg."""

    def __init__(self, candidates: Optional[Sequence[str]] = None, executor: Any = CommandExecutor, logger: Any = None):
        self.candidates = list(candidates or settings.frame_extractor_candidates)
        self.executor = executor
        self.logger = logger or get_logger(__name__)

    def resolve_binary(self) -> str:
        for candidate in self.candidates:
            if os.path.isabs(candidate) and os.path.exists(candidate):
                return candidate
        return self.candidates[-1] if self.candidates else "ffmpeg"

    def build_command(self, binary: str, video_path: str, offset: float, output_path: str) -> List[str]:
        return [binary, "-i", video_path, "-ss", str(offset), "-frames:v", "1", "-q:v", "2", "-y", output_path]

    def extract(self, video_path: str, offset: float, output_path: str) -> str:
        """Write the frame at ``offset`` seconds to ``output_path``.

        Raises:
            AutomationTimeoutError: ffmpeg overran its timeout.
            ExternalToolFailure: ffmpeg failed or left no output file.
        """
        binary = self.resolve_binary()
        self.logger.info(f"Extracting frame from {video_path} at {offset}s with {binary}")
        timeout = CommandExecutor.DEFAULT_TIMEOUTS["ffmpeg"]
        result = self.executor.run_command(self.build_command(binary, video_path, offset, output_path), timeout=timeout)

        if result.timed_out:
            raise AutomationTimeoutError(f"ffmpeg timed out after {timeout}s", timeout=timeout)
        if result.spawn_failed:
            raise ExternalToolFailure(
                f"Failed to run ffmpeg: {result.stderr}. Make sure ffmpeg is installed (brew install ffmpeg)",
                stderr=result.stderr,
                returncode=result.returncode,
            )
        if result.returncode != 0:
            self.logger.error(f"ffmpeg failed with code {result.returncode}: {result.stderr}")
            raise ExternalToolFailure(f"ffmpeg failed with code {result.returncode}: {result.stderr}", stderr=result.stderr, returncode=result.returncode)
        if not os.path.exists(output_path):
            raise ExternalToolFailure(f"Screenshot file not found after ffmpeg completion: {output_path}")
        return output_path


class AttachmentResolver:
    """Produces a screenshot for a test case at a requested time."""

    def __init__(
        self,
        frame_extractor: Optional[FrameExtractor] = None,
        policy: Optional[OrderHeuristicPolicy] = None,
        clock: Any = time.time,
        logger: Any = None,
    ):
        self.frame_extractor = frame_extractor or FrameExtractor()
        self.policy = policy or OrderHeuristicPolicy()
        self.clock = clock
        self.logger = logger or get_logger(__name__)

    def _output_name(self, test_name: str) -> str:
        safe = re.sub(r"[^a-zA-Z0-9]", "_", test_name)
        return f"screenshot_{safe}_{int(self.clock() * 1000)}.png"

    def get_screenshot(self, parser: Any, node: TestNode, timestamp: float) -> ScreenshotSelection:
        """Export or extract the image nearest to ``timestamp`` for ``node``.

        Raises:
            ValidationError: the node has no identifier to query attachments with.
            NotFoundError: the test has no video or image attachments.
        """
        if not node.node_identifier:
            raise ValidationError(f"Test '{node.name}' does not have a valid identifier for attachment retrieval")

        attachments = parser.get_attachments(node.node_identifier)
        if not attachments:
            raise NotFoundError(
                f"No attachments found for test '{node.name}'. This test may not have failed "
                "or may not have generated screenshots/videos.",
                requested=node.node_identifier,
            )

        video = next((a for a in attachments if is_video(a) and a.payload_id), None)
        if video is not None:
            video_path = parser.export_attachment(video.payload_id, video.filename or video.name or f"video_{video.payload_id}.mp4")
            output_path = os.path.join(parser.export_dir, self._output_name(node.name))
            self.frame_extractor.extract(video_path, timestamp, output_path)
            return ScreenshotSelection(path=output_path, source="video", attachment=video)

        images = [a for a in attachments if is_image(a) and a.payload_id]
        choice = select_closest(images, timestamp, self.policy, self.logger)
        if choice is None:
            types = ", ".join(a.type_identifier or "unknown" for a in attachments)
            raise NotFoundError(
                f"No screenshot or video attachments found for test '{node.name}'. Available attachment types: {types}",
                requested=node.node_identifier,
            )

        image, delta, heuristic = choice
        path = parser.export_attachment(image.payload_id, image.filename or image.name or f"screenshot_{image.payload_id}.png")
        return ScreenshotSelection(path=path, source="image", attachment=image, delta=delta, heuristic=heuristic)
