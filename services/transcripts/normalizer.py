"""Segment normalizer: raw provider captions to clean, non-overlapping cues.

The pipeline is sort -> group -> select-or-merge -> filter -> sticky re-timing.
It never raises: malformed entries are dropped and empty input yields ``[]``.
"""

import math
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import BaseModel

from shared.config import config
from shared.enums import (
    MAX_CUE_DURATION,
    MERGE_GAP_TOLERANCE,
    MIN_CUE_DURATION,
    MIN_CUE_GAP,
    SIMILARITY_THRESHOLD,
)
from shared.models import RawSegment, SubtitleCue

SimilarityFn = Callable[[str, str], float]


class NormalizerSettings(BaseModel):
    min_cue_gap: float = MIN_CUE_GAP
    min_cue_duration: float = MIN_CUE_DURATION
    max_cue_duration: float = MAX_CUE_DURATION
    merge_gap_tolerance: float = MERGE_GAP_TOLERANCE
    similarity_threshold: float = SIMILARITY_THRESHOLD
    strict: bool = False

    @classmethod
    def from_config(cls) -> "NormalizerSettings":
        """Build settings from the ``normalizer`` section of the pipeline config."""
        defaults = cls()
        values = {
            name: config.get_pipeline_value(f"normalizer.{name}", getattr(defaults, name))
            for name in cls.model_fields
        }
        return cls(**values)


def jaccard_similarity(a: str, b: str) -> float:
    """Jaccard index over the character sets of two strings (case-sensitive)."""
    if not a or not b:
        return 0.0
    set_a, set_b = set(a), set(b)
    return len(set_a & set_b) / len(set_a | set_b)


class _Draft:
    """Mutable cue under construction."""

    __slots__ = ("text", "start", "end")

    def __init__(self, text: str, start: float, end: float) -> None:
        self.text = text
        self.start = start
        self.end = end

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def score(self) -> float:
        return len(self.text) + self.duration * 10


def _field(entry: Any, name: str) -> Any:
    if isinstance(entry, dict):
        return entry.get(name)
    return getattr(entry, name, None)


def _coerce(entry: Any) -> _Draft | None:
    """Turn a RawSegment, dict or attribute bag into a draft; None if unusable."""
    try:
        start = float(_field(entry, "start"))
    except (TypeError, ValueError):
        return None
    if not math.isfinite(start):
        return None

    try:
        duration = float(_field(entry, "duration") or 0.0)
    except (TypeError, ValueError):
        duration = 0.0
    if not math.isfinite(duration) or duration < 0:
        duration = 0.0

    text = _field(entry, "text")
    text = text.strip() if isinstance(text, str) else ""
    return _Draft(text, start, start + duration)


def _group(drafts: list[_Draft], gap: float) -> list[list[_Draft]]:
    groups: list[list[_Draft]] = []
    for draft in drafts:
        if groups and draft.start - groups[-1][0].start <= gap:
            groups[-1].append(draft)
        else:
            groups.append([draft])
    return groups


def _representative(group: list[_Draft]) -> _Draft:
    """Best-scoring member, anchored at the group start, keeping the longest containing text."""
    if len(group) == 1:
        return group[0]

    best = group[0]
    for candidate in group[1:]:
        if candidate.score > best.score:
            best = candidate

    text = best.text
    for member in group:
        if best.text and best.text in member.text and len(member.text) > len(text):
            text = member.text

    return _Draft(text, group[0].start, max(member.end for member in group))


def _should_merge(prev: _Draft, curr: _Draft, similarity: SimilarityFn, settings: NormalizerSettings) -> bool:
    if curr.start > prev.end + settings.merge_gap_tolerance:
        return False
    if not prev.text or not curr.text:
        return False
    if prev.text in curr.text or curr.text in prev.text:
        return True
    return similarity(prev.text, curr.text) > settings.similarity_threshold


def merge_text(first: str, second: str, strict: bool = False) -> str:
    """Combine overlapping texts without duplication.

    When one contains the other the longer wins. Otherwise the first accepted
    text is kept, which can drop words; ``strict`` concatenates instead.
    """
    if not first:
        return second
    if not second:
        return first
    if second in first:
        return first
    if first in second:
        return second
    return f"{first} {second}" if strict else first


def _retime(drafts: list[_Draft], settings: NormalizerSettings) -> list[SubtitleCue]:
    cues: list[SubtitleCue] = []
    for index, draft in enumerate(drafts):
        cap = draft.start + settings.max_cue_duration
        if index < len(drafts) - 1:
            end = min(drafts[index + 1].start, cap)
        else:
            end = min(draft.end, cap)
        if end - draft.start < settings.min_cue_duration:
            end = draft.start + settings.min_cue_duration
        cues.append(SubtitleCue(id=index + 1, start_time=draft.start, end_time=end, text=draft.text))
    return cues


def normalize(
    segments: Iterable[Any] | None,
    *,
    similarity: SimilarityFn | None = None,
    strict: bool | None = None,
    settings: NormalizerSettings | None = None,
) -> list[SubtitleCue]:
    """Deduplicate, merge and re-time raw caption segments into subtitle cues.

    Args:
        segments: RawSegment instances or mappings with ``text``/``start``/``duration``
        similarity: Text similarity function used by the overlap merge
        strict: Concatenate dissimilar overlapping texts instead of keeping the first
        settings: Thresholds; read from the pipeline config when omitted

    Returns:
        Cues sorted by start time with bounded durations and non-empty text
    """
    settings = settings or NormalizerSettings.from_config()
    similarity = similarity or jaccard_similarity
    strict = settings.strict if strict is None else strict

    drafts = [draft for draft in (_coerce(entry) for entry in segments or ()) if draft is not None]
    drafts.sort(key=lambda draft: draft.start)

    accepted: list[_Draft] = []
    for group in _group(drafts, settings.min_cue_gap):
        candidate = _representative(group)
        prev = accepted[-1] if accepted else None
        if prev is not None and _should_merge(prev, candidate, similarity, settings):
            prev.end = max(prev.end, candidate.end)
            prev.text = merge_text(prev.text, candidate.text, strict)
        else:
            accepted.append(candidate)

    # Short but positive cues survive here and are raised to the minimum when re-timed
    kept = [draft for draft in accepted if draft.text and draft.duration > 0]
    return _retime(kept, settings)


def normalize_inverse(
    cues: Iterable[SubtitleCue], settings: NormalizerSettings | None = None
) -> list[RawSegment]:
    """Express cues as raw segments; normalizing the result reproduces the cues.

    Re-timed cues touch, which the merge step would read as a duplicate run.
    Each segment therefore ends twice the merge tolerance before the next
    start; sticky re-timing closes that gap again.
    """
    settings = settings or NormalizerSettings.from_config()
    cues = list(cues)
    margin = 2 * settings.merge_gap_tolerance
    segments: list[RawSegment] = []
    for index, cue in enumerate(cues):
        end = cue.end_time
        if index < len(cues) - 1:
            end = min(end, cues[index + 1].start_time - margin)
        if end <= cue.start_time:
            end = cue.end_time
        segments.append(RawSegment(text=cue.text, start=cue.start_time, duration=end - cue.start_time))
    return segments
