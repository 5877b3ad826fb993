"""Severity and confidence lookup tables.

Each wire format gets its own table so the mappings can be reviewed and
tested without going through a normalizer. Ranks: 1 = Emergency,
2 = Watch and Act, 3 = Advice, 4 = Information.
"""

from __future__ import annotations

import re

from ingest.models import AccessLevel, Confidence, SourceDescriptor


RANK_LABELS: dict[int, str] = {
    1: "Emergency",
    2: "Watch and Act",
    3: "Advice",
    4: "Information",
}

CONFIDENCE_ORDER: dict[Confidence, int] = {
    Confidence.HIGH: 3,
    Confidence.MEDIUM: 2,
    Confidence.LOW: 1,
    Confidence.UNVERIFIED: 0,
}


def cap_confidence(value: Confidence, ceiling: Confidence) -> Confidence:
    if CONFIDENCE_ORDER[value] > CONFIDENCE_ORDER[ceiling]:
        return ceiling
    return value


def parse_confidence(value: object, default: Confidence) -> Confidence:
    text = str(value or "").strip().casefold()
    try:
        return Confidence(text)
    except ValueError:
        return default


def descriptor_ceiling(descriptor: SourceDescriptor) -> Confidence:
    if not descriptor.certainly_open or descriptor.access_level == AccessLevel.PARTIAL:
        return Confidence.MEDIUM
    return Confidence.HIGH


# Australian Warning System labels plus the variants feeds actually publish.
WARNING_LEVEL_RANKS: dict[str, int] = {
    "emergency warning": 1,
    "emergency": 1,
    "evacuate now": 1,
    "extreme": 1,
    "catastrophic": 1,
    "watch and act": 2,
    "watch & act": 2,
    "watch act": 2,
    "severe": 2,
    "advice": 3,
    "moderate": 3,
    "warning": 3,
    "information": 4,
    "info": 4,
    "community information": 4,
    "community update": 4,
    "not applicable": 4,
    "minor": 4,
    "planned burn": 4,
}

_LABEL_WS_RE = re.compile(r"\s+")


def _normalize_label(label: str) -> str:
    return _LABEL_WS_RE.sub(" ", label.strip().casefold())


def rank_for_warning_level(label: object) -> int | None:
    """Map a feed's severity label to a rank; None when unmapped."""
    if label is None:
        return None
    text = _normalize_label(str(label))
    if not text:
        return None
    rank = WARNING_LEVEL_RANKS.get(text)
    if rank is not None:
        return rank
    if "emerg" in text or "evacuat" in text or "catastroph" in text:
        return 1
    if "watch" in text and "act" in text:
        return 2
    if "advice" in text:
        return 3
    return None


# Ordered: first hit wins.
RSS_KEYWORD_RANKS: tuple[tuple[str, int], ...] = (
    ("emergency warning", 1),
    ("evacuate", 1),
    ("emergency", 1),
    ("catastrophic", 1),
    ("watch and act", 2),
    ("watch & act", 2),
    ("severe", 2),
    ("advice", 3),
    ("warning", 3),
    ("watch", 3),
    ("information", 4),
    ("planned burn", 4),
    ("cancellation", 4),
    ("final", 4),
)

RSS_DEFAULT_RANK = 3
RSS_DEFAULT_CONFIDENCE = Confidence.MEDIUM


def rank_from_keywords(*texts: str) -> int | None:
    haystack = " ".join(t for t in texts if t).casefold()
    if not haystack:
        return None
    for keyword, rank in RSS_KEYWORD_RANKS:
        if keyword in haystack:
            return rank
    return None


CAP_SEVERITY_RANKS: dict[str, int] = {
    "extreme": 1,
    "severe": 2,
    "moderate": 3,
    "minor": 4,
}

CAP_CERTAINTY_CONFIDENCE: dict[str, Confidence] = {
    "observed": Confidence.HIGH,
    "likely": Confidence.HIGH,
    "possible": Confidence.MEDIUM,
    "unlikely": Confidence.LOW,
    "unknown": Confidence.LOW,
}

# (severity, urgency) pairs promoted one rank when the certainty is high.
CAP_URGENCY_PROMOTES: frozenset[tuple[str, str]] = frozenset(
    {
        ("severe", "immediate"),
    }
)


def cap_rank_and_confidence(
    severity: str | None, urgency: str | None, certainty: str | None
) -> tuple[int, Confidence, bool]:
    """Return (rank, confidence, mapped) for a CAP info block."""
    sev = (severity or "").strip().casefold()
    urg = (urgency or "").strip().casefold()
    cer = (certainty or "").strip().casefold()

    confidence = CAP_CERTAINTY_CONFIDENCE.get(cer, Confidence.LOW)
    rank = CAP_SEVERITY_RANKS.get(sev)
    if rank is None:
        return (4, cap_confidence(confidence, Confidence.LOW), False)

    if (sev, urg) in CAP_URGENCY_PROMOTES and confidence == Confidence.HIGH:
        rank -= 1
    return (rank, confidence, True)
