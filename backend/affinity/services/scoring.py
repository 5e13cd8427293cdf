"""
Affinity scoring engine.

Three scorers share one interface and one set of helpers:

- PersonScorer: viewer profile vs another user (connection recommendations).
- JobScorer: viewer profile vs a job post (job opportunities).
- SimilarityScorer: per-matched-id similarity between a profile and a piece of
  content (application/registration ranking, connection updates).

Each scorer keeps its own weight table and ScoringPolicy (floor, ceiling and
required-factor scaling). Scorers are pure: same inputs give the same result,
except JobScorer's jitter, whose random source is injected.
"""
import logging
import math
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from affinity.models import ContentType, TaxonomyAxis, TagSource
from affinity.services.content_store import ContentSnapshot
from affinity.services.profile_aggregator import ProfileSnapshot

logger = logging.getLogger(__name__)

EMPTY: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class MatchedTag:
    id: str
    name: str


@dataclass
class ScoreResult:
    """Outcome of one scorer call. Lives only for one ranking pass."""
    score: float = 0.0
    max_score: float = 0.0
    percentage: int = 0
    matched_factor_count: int = 0
    matches: Dict[str, List[MatchedTag]] = field(default_factory=dict)

    def matched_names(self, bucket: str) -> List[str]:
        return [m.name for m in self.matches.get(bucket, [])]


@dataclass(frozen=True)
class ScoringPolicy:
    floor: int
    ceiling: int
    required_factors: int = 0
    min_scale: float = 0.3

    def scale(self, total: float, matched_factors: int) -> float:
        """Scale down totals built from fewer than required_factors buckets."""
        if self.required_factors and matched_factors < self.required_factors:
            return total * max(self.min_scale, matched_factors / self.required_factors)
        return total

    def clamp(self, total: float) -> int:
        return max(self.floor, min(self.ceiling, round_half_up(total)))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def overlap_ratio(
    viewer_ids: FrozenSet[str],
    candidate_ids: FrozenSet[str],
    extra_ids: Iterable[str] = (),
) -> Tuple[float, FrozenSet[str]]:
    """
    Share of overlapping ids, normalized by the larger of the two declared sets.

    extra_ids widen what the viewer matches against but do not count toward the
    denominator.
    """
    pool = viewer_ids | frozenset(str(i) for i in extra_ids)
    overlap = candidate_ids & pool
    if not overlap:
        return 0.0, EMPTY
    denominator = max(len(viewer_ids), len(candidate_ids))
    return min(1.0, len(overlap) / denominator), overlap


def _tags(ids: Iterable[str], *name_maps: Mapping[str, str]) -> List[MatchedTag]:
    out = []
    for tag_id in sorted(ids):
        name = next((m[tag_id] for m in name_maps if tag_id in m), "Unknown")
        out.append(MatchedTag(id=tag_id, name=name))
    return out


class _Tally:
    """Running total shared by the ratio-based scorers."""

    def __init__(self):
        self.total = 0.0
        self.matched_factors = 0
        self.matches: Dict[str, List[MatchedTag]] = {}

    def add(self, bucket: str, points: float, tags: Sequence[MatchedTag] = ()) -> None:
        if points <= 0:
            return
        self.total += points
        self.matched_factors += 1
        if tags:
            self.matches.setdefault(bucket, []).extend(tags)


class Scorer(ABC):
    weights: Mapping[str, float] = {}
    policy: ScoringPolicy

    def score(self, viewer: ProfileSnapshot, candidate, *args, **kwargs) -> int:
        return self.evaluate(viewer, candidate, *args, **kwargs).percentage

    @abstractmethod
    def evaluate(self, viewer: ProfileSnapshot, candidate, *args, **kwargs) -> ScoreResult:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Person to person
# ---------------------------------------------------------------------------

class PersonScorer(Scorer):
    weights = {"category": 30, "subcategory": 35, "goal": 25, "location": 10}
    policy = ScoringPolicy(floor=20, ceiling=100, required_factors=3)

    def evaluate(
        self,
        viewer: ProfileSnapshot,
        candidate: ProfileSnapshot,
        extra_category_ids: Iterable[str] = (),
        extra_subcategory_ids: Iterable[str] = (),
    ) -> ScoreResult:
        tally = _Tally()
        names = (candidate.term_names, viewer.term_names)

        buckets = (
            ("category", viewer.category_ids, candidate.category_ids, extra_category_ids),
            ("subcategory", viewer.subcategory_ids, candidate.subcategory_ids, extra_subcategory_ids),
            ("goal", viewer.goal_ids, candidate.goal_ids, ()),
        )
        for bucket, mine, theirs, extra in buckets:
            ratio, overlap = overlap_ratio(mine, theirs, extra)
            tally.add(bucket, self.weights[bucket] * ratio, _tags(overlap, *names))

        location = person_location_fraction(viewer, candidate)
        tally.add("location", self.weights["location"] * location)

        total = self.policy.scale(tally.total, tally.matched_factors)
        return ScoreResult(
            score=total,
            max_score=float(sum(self.weights.values())),
            percentage=self.policy.clamp(total),
            matched_factor_count=tally.matched_factors,
            matches=tally.matches,
        )


def person_location_fraction(viewer: ProfileSnapshot, candidate: ProfileSnapshot) -> float:
    """
    0.6 for the same country (exact match), plus 0.4 for the same city
    (case-insensitive) or 0.2 when one city name contains the other.
    """
    fraction = 0.0
    if viewer.country and candidate.country and str(viewer.country) == str(candidate.country):
        fraction += 0.6
    if viewer.city and candidate.city:
        mine, theirs = viewer.city.lower(), candidate.city.lower()
        if mine == theirs:
            fraction += 0.4
        elif mine in theirs or theirs in mine:
            fraction += 0.2
    return fraction


# ---------------------------------------------------------------------------
# Person to job
# ---------------------------------------------------------------------------

class JobScorer(Scorer):
    weights = {"category": 25, "subcategory": 30, "subsubcategory": 20, "identity": 15, "location": 10}
    policy = ScoringPolicy(floor=10, ceiling=100, required_factors=3)

    # Multipliers applied per tag source
    INTEREST_BOOST = 1.5
    ATTRIBUTE_DAMPING = 0.5
    SPECIFICITY_BOOST = 1.2

    BOOST_DIVISOR = 50.0

    def __init__(self, rng: Optional[random.Random] = None, jitter: float = 5.0):
        """
        rng: random source for the jitter; pass a seeded Random for reproducible runs.
        jitter: exclusive upper bound of the random amount added; 0 disables it.
        """
        self.rng = rng if rng is not None else random.Random()
        self.jitter = jitter

    def evaluate(self, viewer: ProfileSnapshot, job: ContentSnapshot) -> ScoreResult:
        tally = _Tally()
        names = (job.tag_names, viewer.term_names)

        # Category and subcategory: interest and attribute tags score independently
        for bucket, axis in (("category", TaxonomyAxis.CATEGORY), ("subcategory", TaxonomyAxis.SUBCATEGORY)):
            job_ids = job.tag_ids(axis)
            for source, multiplier in (
                (TagSource.INTEREST, self.INTEREST_BOOST),
                (TagSource.ATTRIBUTE, self.ATTRIBUTE_DAMPING),
            ):
                mine = viewer.interest_ids(axis) if source is TagSource.INTEREST else viewer.attribute_ids(axis)
                ratio, overlap = overlap_ratio(mine, job_ids)
                tally.add(f"{bucket}_{source.value}", self.weights[bucket] * ratio * multiplier, _tags(overlap, *names))

        for bucket, axis in (("subsubcategory", TaxonomyAxis.SUBSUBCATEGORY), ("identity", TaxonomyAxis.IDENTITY)):
            ratio, overlap = overlap_ratio(viewer.interest_ids(axis), job.tag_ids(axis))
            tally.add(bucket, self.weights[bucket] * ratio * self.SPECIFICITY_BOOST, _tags(overlap, *names))

        tally.add("location", self.weights["location"] * job_location_fraction(viewer, job))

        total = self.policy.scale(tally.total, tally.matched_factors)
        if total > 0:
            total *= 1 + total / self.BOOST_DIVISOR
        if self.jitter > 0:
            total += self.rng.random() * self.jitter

        return ScoreResult(
            score=total,
            max_score=float(self.policy.ceiling),
            percentage=self.policy.clamp(total),
            matched_factor_count=tally.matched_factors,
            matches=tally.matches,
        )


def job_location_fraction(viewer: ProfileSnapshot, job: ContentSnapshot) -> float:
    """Tiered, first match wins: exact city 0.8, partial city 0.4, same country 0.5."""
    mine = (viewer.city or "").lower()
    theirs = (job.city or "").lower()
    if mine and theirs:
        if mine == theirs:
            return 0.8
        if mine in theirs or theirs in mine:
            return 0.4
    if viewer.country and job.country == viewer.country:
        return 0.5
    return 0.0


# ---------------------------------------------------------------------------
# Application / registration similarity
# ---------------------------------------------------------------------------

class SimilarityScorer(Scorer):
    """
    Per-matched-id similarity. maxScore grows by min(|mine|, |theirs|) * weight for
    every axis whether or not it matches; score grows by |matched| * weight.
    """
    weights = {
        TaxonomyAxis.IDENTITY.value: 4,
        TaxonomyAxis.CATEGORY.value: 3,
        TaxonomyAxis.SUBCATEGORY.value: 2,
        TaxonomyAxis.SUBSUBCATEGORY.value: 1,
    }
    # Only job posts carry industry tags
    job_weights = {
        TaxonomyAxis.INDUSTRY_CATEGORY.value: 2,
        TaxonomyAxis.INDUSTRY_SUBCATEGORY.value: 1.5,
        TaxonomyAxis.INDUSTRY_SUBSUBCATEGORY.value: 1,
    }
    policy = ScoringPolicy(floor=0, ceiling=100)

    def evaluate(
        self,
        viewer: ProfileSnapshot,
        content: ContentSnapshot,
        content_type: Optional[str] = None,
        sources: Sequence[TagSource] = (TagSource.ATTRIBUTE,),
    ) -> ScoreResult:
        content_type = content_type or content.content_type
        weights = dict(self.weights)
        if content_type == ContentType.JOB.value:
            weights.update(self.job_weights)

        score = 0.0
        max_score = 0.0
        matched_factors = 0
        matches: Dict[str, List[MatchedTag]] = {}

        for axis_value, weight in weights.items():
            axis = TaxonomyAxis(axis_value)
            mine = frozenset().union(*(self._ids(viewer, axis, s) for s in sources))
            theirs = content.tag_ids(axis)

            max_score += min(len(mine), len(theirs)) * weight
            matched = mine & theirs
            if matched:
                score += len(matched) * weight
                matched_factors += 1
                matches[axis_value] = _tags(matched, content.tag_names, viewer.term_names)

        percentage = self.policy.clamp(100 * score / max_score) if max_score > 0 else 0
        return ScoreResult(
            score=score,
            max_score=max_score,
            percentage=percentage,
            matched_factor_count=matched_factors,
            matches=matches,
        )

    @staticmethod
    def _ids(viewer: ProfileSnapshot, axis: TaxonomyAxis, source: TagSource) -> FrozenSet[str]:
        if source is TagSource.INTEREST:
            return viewer.interest_ids(axis)
        return viewer.attribute_ids(axis)


# ---------------------------------------------------------------------------
# Two-way person matching
# ---------------------------------------------------------------------------

MATCH_FORMULA_SIMPLE = "simple"
MATCH_FORMULA_RECIPROCAL = "reciprocal"
RECIPROCAL_SELF_WEIGHT = 0.7


def average_match(forward: float, backward: float) -> float:
    return (forward + backward) / 2


def reciprocal_weighted_match(forward: float, backward: float, weight_self: float = RECIPROCAL_SELF_WEIGHT) -> float:
    """The viewer's own side counts for weight_self, the candidate's view of them for the rest."""
    return forward * weight_self + backward * (1 - weight_self)


def score_person_match(
    viewer: ProfileSnapshot,
    candidate: ProfileSnapshot,
    bidirectional: bool = True,
    formula: str = MATCH_FORMULA_RECIPROCAL,
    scorer: Optional[PersonScorer] = None,
) -> int:
    """
    Person match as shown in recommendations.

    With bidirectional on, the candidate is also scored against the viewer and the
    two percentages are combined: "simple" takes the mean, anything else uses the
    reciprocal 0.7 / 0.3 weighting.
    """
    scorer = scorer or PersonScorer()
    forward = scorer.score(viewer, candidate)
    if not bidirectional:
        return forward

    backward = scorer.score(candidate, viewer)
    if formula == MATCH_FORMULA_SIMPLE:
        combined = average_match(forward, backward)
    else:
        combined = reciprocal_weighted_match(forward, backward)
    return round_half_up(combined)
