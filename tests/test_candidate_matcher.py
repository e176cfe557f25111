"""Unit tests for candidate classification and ranking."""

import pytest

from fusioncore.config import FusionConfig
from fusioncore.errors import ConfigurationError
from fusioncore.resolution.candidate_matcher import CandidateMatcher
from fusioncore.resolution.models import Candidate, Classification, ScoreResult

from .conftest import make_config


def score(attribute, value, threshold=80, mandatory=False):
    return ScoreResult(
        attribute=attribute,
        algorithm="lig3",
        value=value,
        threshold=threshold,
        mandatory=mandatory,
        is_match=value >= threshold,
    )


def candidate(identity_id, name, email):
    return Candidate(id=identity_id, name=name, attributes={"name": name, "email": email})


class TestClassification:
    """Test classification of attribute scores."""

    @pytest.fixture
    def matcher(self, config):
        return CandidateMatcher(config)

    def test_all_pass_is_matching(self, matcher):
        assert matcher.classify([score("name", 90), score("email", 100)]) == Classification.MATCHING

    def test_some_pass_is_ambiguous(self, matcher):
        assert matcher.classify([score("name", 90), score("email", 0)]) == Classification.AMBIGUOUS

    def test_none_pass_is_non_matching(self, matcher):
        assert matcher.classify([score("name", 10), score("email", 0)]) == Classification.NON_MATCHING

    def test_failed_mandatory_disqualifies(self, matcher):
        scores = [score("name", 100), score("email", 0, threshold=100, mandatory=True)]

        assert matcher.classify(scores) == Classification.DISQUALIFIED

    def test_viable_classes(self):
        assert Classification.MATCHING.viable
        assert Classification.AMBIGUOUS.viable
        assert not Classification.DISQUALIFIED.viable
        assert not Classification.NON_MATCHING.viable


class TestAverageScoreMode:
    """Test classification by mean score."""

    @pytest.fixture
    def matcher(self):
        return CandidateMatcher(make_config(use_average_score=True, average_score=80))

    def test_mean_at_threshold_matches(self, matcher):
        assert matcher.classify([score("name", 90), score("email", 70)]) == Classification.MATCHING

    def test_mean_below_threshold(self, matcher):
        assert matcher.classify([score("name", 70), score("email", 70)]) == Classification.NON_MATCHING

    def test_mandatory_still_disqualifies(self, matcher):
        scores = [score("name", 100), score("email", 90, threshold=100, mandatory=True)]

        assert matcher.classify(scores) == Classification.DISQUALIFIED


class TestEvaluate:
    """Test scoring, classifying and ranking candidates."""

    def test_no_policies(self):
        with pytest.raises(ConfigurationError) as exc_info:
            CandidateMatcher(FusionConfig())

        assert exc_info.value.setting == "matching_policies"

    def test_unknown_algorithm_fails_whole_round(self):
        matcher = CandidateMatcher(
            FusionConfig(matching_policies=[{"attribute": "name", "algorithm": "soundex"}])
        )

        with pytest.raises(ConfigurationError):
            matcher.evaluate({"name": "John"}, [candidate("id1", "John", "j@x.org")])

    def test_ranked_and_classified(self, strict_config):
        matcher = CandidateMatcher(strict_config)
        attributes = {"name": "John A. Smith", "email": "john@example.org"}
        candidates = [
            candidate("id2", "Jane Doe", "jane@example.org"),
            candidate("id1", "John Smith", "john@example.org"),
        ]

        ranked = matcher.evaluate(attributes, candidates)

        assert [c.id for c in ranked] == ["id1", "id2"]
        assert ranked[0].classification == Classification.MATCHING
        assert [s.value for s in ranked[0].scores] == [83, 100]
        assert ranked[1].classification == Classification.DISQUALIFIED

    def test_inputs_are_not_mutated(self, config):
        matcher = CandidateMatcher(config)
        original = candidate("id1", "John Smith", "john@example.org")

        matcher.evaluate({"name": "John Smith"}, [original])

        assert original.scores == []
        assert original.classification is None

    def test_ties_broken_by_id(self):
        first = Candidate(id="b", name="B", scores=[score("name", 90)])
        second = Candidate(id="a", name="A", scores=[score("name", 90)])

        assert [c.id for c in CandidateMatcher.rank([first, second])] == ["a", "b"]

    def test_viable_filter(self):
        candidates = [
            Candidate(id="a", name="A", classification=Classification.AMBIGUOUS),
            Candidate(id="b", name="B", classification=Classification.DISQUALIFIED),
        ]

        assert [c.id for c in CandidateMatcher.viable(candidates)] == ["a"]

    def test_format_scores(self):
        assert CandidateMatcher.format_scores([score("name", 85), score("email", 100)]) == "name:85, email:100"
