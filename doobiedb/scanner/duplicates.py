"""Post-hoc duplicate scoring and grouping over persisted records."""

from __future__ import annotations

import re
from dataclasses import dataclass
from difflib import SequenceMatcher

from .models import DuplicateGroup, ProductRecord

_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass
class SimilarityWeights:
    """Points per factor and the grouping threshold (0–100 scale).

    These are heuristics carried over from the catalog cleanup tool and are
    meant to be tuned from config.
    """

    name_exact: int = 40
    name_contains: int = 30
    name_near: int = 30
    name_prefix: int = 15
    near_ratio: float = 0.85
    category: int = 20
    thc_close: int = 15  # within 2 points
    thc_near: int = 10  # within 5 points
    cbd_close: int = 10  # within 1 point
    cbd_near: int = 5  # within 2 points
    effect_each: int = 3
    effect_cap: int = 15
    threshold: int = 75


def normalize_name(name: str) -> str:
    return _NON_ALNUM.sub("", name.lower())


def _name_points(a: str, b: str, w: SimilarityWeights) -> int:
    if not a or not b:
        return 0
    if a == b:
        return w.name_exact
    if a in b or b in a:
        return w.name_contains
    if SequenceMatcher(None, a, b).ratio() >= w.near_ratio:
        return w.name_near
    if a[:3] == b[:3]:
        return w.name_prefix
    return 0


def similarity(
    a: ProductRecord, b: ProductRecord, weights: SimilarityWeights | None = None
) -> int:
    """Score two records 0–100.

    Numeric factors only count toward the maximum when both records carry a
    value, so a missing CBD figure does not drag the score down.
    """
    w = weights or SimilarityWeights()
    score = 0
    possible = 0

    score += _name_points(normalize_name(a.name), normalize_name(b.name), w)
    possible += w.name_exact

    if a.category == b.category:
        score += w.category
    possible += w.category

    if a.thc and b.thc:
        diff = abs(a.thc - b.thc)
        if diff <= 2:
            score += w.thc_close
        elif diff <= 5:
            score += w.thc_near
        possible += w.thc_close

    if a.cbd and b.cbd:
        diff = abs(a.cbd - b.cbd)
        if diff <= 1:
            score += w.cbd_close
        elif diff <= 2:
            score += w.cbd_near
        possible += w.cbd_close

    effects_a = {e.name.lower() for e in a.effect_profiles}
    effects_b = {e.name.lower() for e in b.effect_profiles}
    shared = len(effects_a & effects_b)
    score += min(shared * w.effect_each, w.effect_cap)
    possible += w.effect_cap

    if possible == 0:
        return 0
    return round(score / possible * 100)


def find_groups(
    records: list[ProductRecord], weights: SimilarityWeights | None = None
) -> list[DuplicateGroup]:
    """Group near-identical records; every record lands in at most one group.

    Single O(n²) pass: each unprocessed record absorbs every later
    unprocessed record that scores at or above the threshold.
    """
    w = weights or SimilarityWeights()
    processed: set[int] = set()
    groups: list[DuplicateGroup] = []

    for i, anchor in enumerate(records):
        if i in processed:
            continue
        processed.add(i)
        members = [anchor]
        lowest = 100

        for j in range(i + 1, len(records)):
            if j in processed:
                continue
            score = similarity(anchor, records[j], w)
            if score >= w.threshold:
                members.append(records[j])
                processed.add(j)
                lowest = min(lowest, score)

        if len(members) > 1:
            groups.append(
                DuplicateGroup(
                    anchor_name=anchor.name, members=members, similarity=lowest
                )
            )
    return groups
