"""
Similarity Scoring System

Pluggable string similarity algorithms mapping two attribute values to an
integer score between 0 and 100. Every value is normalized (diacritics
stripped, case-folded, whitespace collapsed) before any algorithm runs, so
algorithms only ever see comparable text.
"""

import re
import logging
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Tuple

import jellyfish
from fuzzywuzzy import fuzz
from metaphone import doublemetaphone

from ..config import MatchingPolicy
from ..errors import ConfigurationError, ScoringError
from .lig3 import lig3_similarity
from .models import ScoreResult
from .normalization import normalize_text

logger = logging.getLogger(__name__)

EMPTY_COMMENT = "Empty string comparison"
EXACT_COMMENT = "Exact match"

Comparison = Tuple[int, Optional[str]]


def _to_score(similarity: float) -> int:
    """Turn a 0..1 similarity into a clamped integer score."""
    return max(0, min(100, int(round(similarity * 100))))


class SimilarityAlgorithm(ABC):
    """One way of comparing two normalized strings."""

    name: str = ""

    @abstractmethod
    def compare(self, a: str, b: str) -> Comparison:
        """Score two non-empty normalized strings.

        Returns:
            Tuple of (score 0-100, optional explanatory comment)
        """


class ExactAlgorithm(SimilarityAlgorithm):
    name = "exact"

    def compare(self, a: str, b: str) -> Comparison:
        if a == b:
            return 100, EXACT_COMMENT
        return 0, "Values differ"


class JaroWinklerAlgorithm(SimilarityAlgorithm):
    name = "jaro-winkler"

    def compare(self, a: str, b: str) -> Comparison:
        return _to_score(jellyfish.jaro_winkler_similarity(a, b)), None


class DiceAlgorithm(SimilarityAlgorithm):
    """Sorensen-Dice coefficient over character bigrams, whitespace ignored."""

    name = "dice"

    @staticmethod
    def _bigrams(value: str) -> Counter:
        compact = "".join(value.split())
        return Counter(compact[i:i + 2] for i in range(len(compact) - 1))

    def compare(self, a: str, b: str) -> Comparison:
        bigrams_a, bigrams_b = self._bigrams(a), self._bigrams(b)
        total = sum(bigrams_a.values()) + sum(bigrams_b.values())
        if total == 0:
            # Single characters have no bigrams
            return (100, EXACT_COMMENT) if a == b else (0, "Too short to compare")
        shared = sum((bigrams_a & bigrams_b).values())
        return _to_score(2.0 * shared / total), None


class DoubleMetaphoneAlgorithm(SimilarityAlgorithm):
    """Phonetic comparison on primary and secondary Double Metaphone codes."""

    name = "double-metaphone"

    def compare(self, a: str, b: str) -> Comparison:
        primary_a, secondary_a = doublemetaphone(a)
        primary_b, secondary_b = doublemetaphone(b)

        if primary_a and primary_a == primary_b:
            return 100, "Primary codes match"
        if secondary_a and secondary_a == secondary_b:
            return 80, "Secondary codes match"
        if (primary_a and primary_a == secondary_b) or (secondary_a and secondary_a == primary_b):
            return 70, "Cross-match between primary and secondary codes"
        return 0, "No phonetic match"


class NameMatcherAlgorithm(SimilarityAlgorithm):
    """
    Person-name matcher.

    Understands "Last, First" ordering, drops honorifics and generational
    suffixes, treats common nicknames as their formal name and accepts
    initials in place of a full given name.
    """

    name = "name-matcher"

    NICKNAMES = {
        "anthony": ["tony", "ant"],
        "david": ["dave", "davy"],
        "peter": ["pete"],
        "robert": ["rob", "bob", "bobby", "bert"],
        "william": ["will", "bill", "billy", "liam"],
        "richard": ["rick", "dick", "rich"],
        "elizabeth": ["liz", "beth", "betty", "eliza"],
        "catherine": ["cat", "cath", "kate", "katie"],
        "michael": ["mike", "mick"],
        "christopher": ["chris"],
        "patricia": ["pat", "patty", "trish"],
        "james": ["jim", "jimmy"],
        "john": ["johnny", "jack"],
        "jennifer": ["jen", "jenny"],
        "jessica": ["jess", "jessie"],
        "samuel": ["sam", "sammy"],
        "alexander": ["alex"],
        "benjamin": ["ben", "benny"],
        "nicholas": ["nick", "nicky"],
        "matthew": ["matt", "matty"],
        "joseph": ["joe", "joey", "pepe"],
        "daniel": ["dan", "danny"],
        "thomas": ["tom", "tommy"],
        "charles": ["charlie", "chuck"],
        "andrew": ["andy", "drew"],
        "francisco": ["paco", "pancho"],
        "alejandro": ["alex", "ale"],
        "guillermo": ["memo"],
    }

    TITLES = {"mr", "mrs", "ms", "miss", "dr", "prof", "sir", "lady", "lord", "sr", "sra", "don", "dona"}
    SUFFIXES = {"jr", "ii", "iii", "iv", "phd", "md", "esq"}

    def __init__(self):
        self.nickname_to_full: Dict[str, str] = {}
        for full_name, nicknames in self.NICKNAMES.items():
            for nickname in nicknames:
                self.nickname_to_full.setdefault(nickname, full_name)

    def canonical_tokens(self, name: str) -> List[str]:
        """Tokens of a name in given-name-first order with nicknames expanded."""
        if "," in name:
            family, _, given = name.partition(",")
            name = f"{given} {family}"

        parts = re.sub(r"[^\w\s'-]", " ", name).split()
        parts = [p for p in parts if p not in self.TITLES and p not in self.SUFFIXES]
        return [self.nickname_to_full.get(p, p) for p in parts]

    @staticmethod
    def _initials_match(tokens_a: List[str], tokens_b: List[str]) -> bool:
        if len(tokens_a) != len(tokens_b):
            return False
        full_matches = 0
        for left, right in zip(tokens_a, tokens_b):
            if left == right:
                full_matches += 1
            elif len(left) == 1 and right.startswith(left):
                continue
            elif len(right) == 1 and left.startswith(right):
                continue
            else:
                return False
        return full_matches > 0

    def compare(self, a: str, b: str) -> Comparison:
        tokens_a, tokens_b = self.canonical_tokens(a), self.canonical_tokens(b)
        if not tokens_a or not tokens_b:
            return 0, "No name tokens"
        if sorted(tokens_a) == sorted(tokens_b):
            return 100, "Equivalent names"
        if self._initials_match(tokens_a, tokens_b):
            return 90, "Initials match"
        return fuzz.token_sort_ratio(" ".join(tokens_a), " ".join(tokens_b)), None


class Lig3Algorithm(SimilarityAlgorithm):
    name = "lig3"

    def compare(self, a: str, b: str) -> Comparison:
        return lig3_similarity(a, b), None


DEFAULT_ALGORITHMS: Tuple[type, ...] = (
    ExactAlgorithm,
    JaroWinklerAlgorithm,
    DiceAlgorithm,
    DoubleMetaphoneAlgorithm,
    NameMatcherAlgorithm,
    Lig3Algorithm,
)


class SimilarityScorer:
    """
    Registry and entry point for similarity algorithms.

    Scoring is pure and deterministic. Values that an algorithm cannot handle
    score 0 with a comment when scored through a matching policy, so one bad
    attribute never aborts a candidate evaluation.
    """

    def __init__(self, algorithms: Optional[Iterable[SimilarityAlgorithm]] = None):
        """Initialize the scorer with the given or the default algorithms."""
        if algorithms is None:
            algorithms = [algorithm_cls() for algorithm_cls in DEFAULT_ALGORITHMS]
        self.algorithms: Dict[str, SimilarityAlgorithm] = {
            algorithm.name: algorithm for algorithm in algorithms
        }

    def register(self, algorithm: SimilarityAlgorithm) -> None:
        self.algorithms[algorithm.name] = algorithm

    def get_algorithm(self, name: str) -> SimilarityAlgorithm:
        """Look up an algorithm by name.

        Raises:
            ConfigurationError: If no algorithm is registered under the name
        """
        key = name.strip().lower().replace("_", "-")
        try:
            return self.algorithms[key]
        except KeyError:
            raise ConfigurationError(
                f"Unknown similarity algorithm '{name}'", setting="algorithm"
            ) from None

    def compare(self, value_a: Any, value_b: Any, algorithm: str) -> Comparison:
        """Score two attribute values and explain the result.

        List values score as their best pair.

        Raises:
            ConfigurationError: Unknown algorithm
            ScoringError: Values are not strings or lists of strings
        """
        implementation = self.get_algorithm(algorithm)
        values_a = self._string_values(value_a, implementation.name)
        values_b = self._string_values(value_b, implementation.name)

        best: Comparison = (0, EMPTY_COMMENT)
        for raw_a in values_a:
            for raw_b in values_b:
                a, b = normalize_text(raw_a), normalize_text(raw_b)
                if not a or not b:
                    continue
                score, comment = implementation.compare(a, b)
                score = max(0, min(100, int(score)))
                if score > best[0] or best[1] == EMPTY_COMMENT:
                    best = (score, comment)
        return best

    def score(self, value_a: Any, value_b: Any, algorithm: str) -> int:
        """Score two values with the named algorithm, 0 to 100."""
        return self.compare(value_a, value_b, algorithm)[0]

    def score_attribute(
        self, policy: MatchingPolicy, value_a: Any, value_b: Any
    ) -> ScoreResult:
        """Score one attribute under a matching policy.

        Raises:
            ConfigurationError: The policy names an unknown algorithm
        """
        try:
            value, comment = self.compare(value_a, value_b, policy.algorithm)
        except ScoringError as error:
            logger.warning(
                f"Could not score '{policy.attribute}' with {policy.algorithm}: {error.message}"
            )
            value, comment = 0, error.message

        return ScoreResult(
            attribute=policy.attribute,
            algorithm=policy.algorithm,
            value=value,
            threshold=policy.threshold,
            mandatory=policy.mandatory,
            is_match=value >= policy.threshold,
            comment=comment,
        )

    @staticmethod
    def _string_values(value: Any, algorithm: str) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, list) and all(isinstance(item, str) for item in value):
            return value
        raise ScoringError(
            f"Cannot score {type(value).__name__} value as text",
            algorithm=algorithm,
            value=value,
        )
