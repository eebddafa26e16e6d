"""
cfp/leaderboard.py

Competitive leaderboard: competitor deduplication and mention statistics.

Only recommendation-prompt observations without an error contribute. A
competitor is counted at most once per observation, so every mention count is
bounded by ``total_recommendation_queries``.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from cfp.prompts import PromptType
from cfp.response_analyzer import ModelObservation

_LEGAL_SUFFIXES = frozenset(
    {
        "inc", "incorporated", "llc", "ltd", "limited", "corp", "corporation",
        "co", "company", "plc", "gmbh", "lp", "llp",
    }
)
_LEADING_ARTICLES = frozenset({"the"})
_PUNCTUATION = re.compile(r"[^\w\s]")


def normalize_competitor_name(name: str) -> str:
    """
    Dedup key for a competitor name: case-folded, punctuation and legal
    suffixes removed, leading article dropped, whitespace collapsed.

    >>> normalize_competitor_name("The Competitor, LLC.")
    'competitor'
    """

    folded = name.casefold().replace("&", " and ")
    tokens = _PUNCTUATION.sub("", folded).split()
    if tokens and tokens[0] in _LEADING_ARTICLES:
        tokens = tokens[1:]
    while tokens and tokens[-1] in _LEGAL_SUFFIXES:
        tokens = tokens[:-1]
    key = " ".join(tokens)
    return key or " ".join(name.casefold().split())


@dataclass(frozen=True)
class CompetitorEntry:
    name: str
    mention_count: int
    avg_position: float | None = None
    appears_with_target: int = 0
    positions: tuple[int, ...] = ()
    co_occurrence_ids: frozenset[str] = frozenset()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "mention_count": self.mention_count,
            "avg_position": self.avg_position,
            "appears_with_target": self.appears_with_target,
        }


@dataclass(frozen=True)
class TargetEntry:
    name: str
    rank: int | None
    mention_count: int
    avg_position: float | None
    mention_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "rank": self.rank,
            "mention_count": self.mention_count,
            "avg_position": self.avg_position,
            "mention_rate": self.mention_rate,
        }


@dataclass(frozen=True)
class CompetitiveLeaderboard:
    target: TargetEntry
    competitors: list[CompetitorEntry] = field(default_factory=list)
    total_recommendation_queries: int = 0

    @property
    def total_mentions(self) -> int:
        return self.target.mention_count + sum(entry.mention_count for entry in self.competitors)

    def market_share(self, entry: CompetitorEntry) -> int:
        """Whole-percent share of all mentions; derived, never stored."""
        total = self.total_mentions
        if total <= 0:
            return 0
        return round(entry.mention_count / total * 100)

    def ranked(self) -> list[dict[str, Any]]:
        """Competitors in leaderboard order with rank and market share attached."""
        return [
            {**entry.to_dict(), "rank": index, "market_share": self.market_share(entry)}
            for index, entry in enumerate(self.competitors, start=1)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_business": self.target.to_dict(),
            "competitors": [entry.to_dict() for entry in self.competitors],
            "total_recommendation_queries": self.total_recommendation_queries,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CompetitiveLeaderboard":
        target = payload.get("target_business") or {}
        return cls(
            target=TargetEntry(
                name=str(target.get("name", "")),
                rank=target.get("rank"),
                mention_count=int(target.get("mention_count", 0)),
                avg_position=target.get("avg_position"),
                mention_rate=float(target.get("mention_rate", 0.0)),
            ),
            competitors=[
                CompetitorEntry(
                    name=str(item["name"]),
                    mention_count=int(item.get("mention_count", 0)),
                    avg_position=item.get("avg_position"),
                    appears_with_target=int(item.get("appears_with_target", 0)),
                )
                for item in payload.get("competitors") or []
            ],
            total_recommendation_queries=int(payload.get("total_recommendation_queries", 0)),
        )


def _mean(values: Sequence[float]) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


class CompetitiveLeaderboardBuilder:
    """
    Builds a CompetitiveLeaderboard from model observations.

    Args:
        normalizer: Maps a raw competitor name to its dedup key. Swap in a
            fuzzier matcher without touching the aggregation.
    """

    def __init__(self, normalizer: Callable[[str], str] = normalize_competitor_name) -> None:
        self._normalizer = normalizer

    def build(self, target_name: str, observations: Iterable[ModelObservation]) -> CompetitiveLeaderboard:
        recommendation = [
            observation
            for observation in observations
            if observation.prompt_type == PromptType.RECOMMENDATION and observation.succeeded
        ]
        target_positions = [
            observation.rank_position
            for observation in recommendation
            if observation.mentioned and observation.rank_position is not None
        ]
        return self.assemble(
            target_name=target_name,
            target_mention_count=sum(1 for observation in recommendation if observation.mentioned),
            target_avg_position=_mean(target_positions),
            entries=self.collect(recommendation),
            total_recommendation_queries=len(recommendation),
        )

    def collect(self, observations: Iterable[ModelObservation]) -> list[CompetitorEntry]:
        """
        One raw entry per exact competitor spelling. Variants of one name in
        the same observation count once (the first spelling wins).
        """

        counts: dict[str, int] = {}
        positions: dict[str, list[int]] = {}
        co_occurrences: dict[str, set[str]] = {}
        for observation in observations:
            seen: set[str] = set()
            for mention in observation.competitor_mentions:
                key = self._normalizer(mention.name)
                if key in seen:
                    continue
                seen.add(key)
                counts[mention.name] = counts.get(mention.name, 0) + 1
                positions.setdefault(mention.name, [])
                co_occurrences.setdefault(mention.name, set())
                if mention.position is not None:
                    positions[mention.name].append(mention.position)
                if observation.mentioned:
                    co_occurrences[mention.name].add(observation.observation_id)

        return [
            CompetitorEntry(
                name=name,
                mention_count=count,
                avg_position=_mean(positions[name]),
                appears_with_target=len(co_occurrences[name]),
                positions=tuple(positions[name]),
                co_occurrence_ids=frozenset(co_occurrences[name]),
            )
            for name, count in counts.items()
        ]

    def merge(self, entries: Iterable[CompetitorEntry]) -> list[CompetitorEntry]:
        """Group entries by normalized name and recompute each group's stats."""

        groups: dict[str, list[CompetitorEntry]] = {}
        for entry in entries:
            groups.setdefault(self._normalizer(entry.name), []).append(entry)
        return [self._merge_group(members) for members in groups.values()]

    def assemble(
        self,
        *,
        target_name: str,
        target_mention_count: int,
        target_avg_position: float | None,
        entries: Iterable[CompetitorEntry],
        total_recommendation_queries: int,
    ) -> CompetitiveLeaderboard:
        merged = self.merge(entries)
        merged.sort(key=lambda entry: (-entry.mention_count, entry.name.casefold()))

        if target_mention_count > 0:
            rank: int | None = 1 + sum(1 for entry in merged if entry.mention_count > target_mention_count)
        else:
            rank = None
        mention_rate = (
            round(target_mention_count / total_recommendation_queries * 100, 2)
            if total_recommendation_queries > 0
            else 0.0
        )
        return CompetitiveLeaderboard(
            target=TargetEntry(
                name=target_name,
                rank=rank,
                mention_count=target_mention_count,
                avg_position=target_avg_position,
                mention_rate=mention_rate,
            ),
            competitors=merged,
            total_recommendation_queries=total_recommendation_queries,
        )

    @staticmethod
    def _merge_group(members: list[CompetitorEntry]) -> CompetitorEntry:
        if len(members) == 1:
            return members[0]

        mention_count = sum(member.mention_count for member in members)
        # Display the most-mentioned spelling; ties keep the first seen.
        display = max(members, key=lambda member: member.mention_count)

        pooled = [position for member in members for position in member.positions]
        if pooled:
            avg_position = _mean(pooled)
        else:
            weighted = [(member.avg_position, member.mention_count) for member in members if member.avg_position is not None]
            weight = sum(count for _, count in weighted)
            avg_position = round(sum(avg * count for avg, count in weighted) / weight, 2) if weight else None

        ids_known = all(len(member.co_occurrence_ids) == member.appears_with_target for member in members)
        if ids_known:
            union: frozenset[str] = frozenset().union(*(member.co_occurrence_ids for member in members))
            appears_with_target = len(union)
        else:
            union = frozenset()
            appears_with_target = sum(member.appears_with_target for member in members)

        return CompetitorEntry(
            name=display.name,
            mention_count=mention_count,
            avg_position=avg_position,
            appears_with_target=appears_with_target,
            positions=tuple(pooled),
            co_occurrence_ids=union,
        )
