"""
Candidate Matcher

Scores every candidate identity for one unresolved account against the
configured matching policies, classifies the candidates and ranks them.
"""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence

from ..config import FusionConfig
from ..errors import ConfigurationError
from .models import Candidate, Classification, ScoreResult
from .similarity_scoring import SimilarityScorer

logger = logging.getLogger(__name__)


class CandidateMatcher:
    """Applies matching policies to candidates and ranks the result."""

    def __init__(self, config: FusionConfig, scorer: Optional[SimilarityScorer] = None):
        if not config.matching_policies:
            raise ConfigurationError(
                "No matching policies configured", setting="matching_policies"
            )
        self.config = config
        self.scorer = scorer or SimilarityScorer()

    def validate_policies(self) -> None:
        """Fail fast when a policy names an algorithm the scorer lacks."""
        for policy in self.config.matching_policies:
            self.scorer.get_algorithm(policy.algorithm)

    def score_candidate(
        self, attributes: Dict[str, Any], candidate: Candidate
    ) -> List[ScoreResult]:
        """Score every policy attribute of an account against one candidate."""
        return [
            self.scorer.score_attribute(
                policy,
                attributes.get(policy.attribute),
                candidate.attributes.get(policy.attribute),
            )
            for policy in self.config.matching_policies
        ]

    def classify(self, scores: Sequence[ScoreResult]) -> Classification:
        """Classify a candidate from its attribute scores."""
        if any(score.mandatory and not score.is_match for score in scores):
            return Classification.DISQUALIFIED

        if self.config.use_average_score:
            mean = sum(score.value for score in scores) / len(scores) if scores else 0.0
            if mean >= self.config.average_score:
                return Classification.MATCHING
            return Classification.NON_MATCHING

        passed = sum(1 for score in scores if score.is_match)
        if passed == len(scores):
            return Classification.MATCHING
        if passed > 0:
            return Classification.AMBIGUOUS
        return Classification.NON_MATCHING

    def evaluate(
        self, attributes: Dict[str, Any], candidates: Sequence[Candidate]
    ) -> List[Candidate]:
        """Score, classify and rank all candidates.

        The returned list is complete or the call raises; partially scored
        rounds are never returned.

        Raises:
            ConfigurationError: A policy names an unknown algorithm
        """
        self.validate_policies()

        evaluated = []
        for candidate in candidates:
            scores = self.score_candidate(attributes, candidate)
            classification = self.classify(scores)
            evaluated.append(replace(candidate, scores=scores, classification=classification))
            logger.debug(
                f"Candidate {candidate.id} classified {classification.value} "
                f"({self.format_scores(scores)})"
            )

        return self.rank(evaluated)

    @staticmethod
    def rank(candidates: Sequence[Candidate]) -> List[Candidate]:
        """Order by mean score descending, then identity id ascending."""
        return sorted(candidates, key=lambda c: (-c.mean_score, c.id))

    @staticmethod
    def viable(candidates: Sequence[Candidate]) -> List[Candidate]:
        return [c for c in candidates if c.classification is not None and c.classification.viable]

    @staticmethod
    def format_scores(scores: Sequence[ScoreResult]) -> str:
        """Compact form used in logs: ``name:85, email:100``."""
        return ", ".join(f"{score.attribute}:{score.value}" for score in scores)
