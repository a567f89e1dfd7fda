"""Tests for candidate classification."""

from datetime import date

from staywatch.matching import (
    MatchVerdict,
    ReasonCode,
    classify,
    evaluate_candidate,
    is_alertable,
)
from tests.factories import make_candidate, make_intent


class TestClassify:
    """Test cases for classify()."""

    def setup_method(self):
        self.intent = make_intent()

    def test_all_fields_confirmed_is_strong(self):
        result = classify(make_candidate(), self.intent)

        assert result.verdict == MatchVerdict.STRONG
        assert result.reasons == ()
        assert result.description == "All fingerprint fields matched"

    def test_wrong_date_is_mismatch(self):
        result = classify(make_candidate(stay_start_date=date(2024, 7, 2)), self.intent)

        assert result.verdict == MatchVerdict.MISMATCH
        assert result.reasons[0].code == ReasonCode.DATE_MISMATCH
        assert "Date mismatch" in result.description
        assert "2024-07-01" in result.description
        assert "2024-07-02" in result.description

    def test_wrong_nights_is_mismatch(self):
        result = classify(make_candidate(stay_nights=3), self.intent)

        assert result.verdict == MatchVerdict.MISMATCH
        assert result.reasons[0].code == ReasonCode.NIGHTS_MISMATCH
        assert result.description.startswith("Nights mismatch")

    def test_date_checked_before_nights(self):
        result = classify(
            make_candidate(stay_start_date=date(2024, 8, 1), stay_nights=3), self.intent
        )

        assert result.reasons[0].code == ReasonCode.DATE_MISMATCH

    def test_unknown_bedrooms_is_unknown(self):
        result = classify(make_candidate(bedrooms=None), self.intent)

        assert result.verdict == MatchVerdict.UNKNOWN
        assert "Bedroom count unknown" in result.description
        assert result.description.startswith("Potential match but data missing")

    def test_too_few_bedrooms_is_mismatch(self):
        result = classify(make_candidate(bedrooms=1), self.intent)

        assert result.verdict == MatchVerdict.MISMATCH
        assert result.description == "Too few bedrooms: 1 < 2"

    def test_bedrooms_ignored_when_not_required(self):
        result = classify(make_candidate(bedrooms=None), make_intent(min_bedrooms=0))

        assert result.verdict == MatchVerdict.STRONG

    def test_pets_not_allowed_is_mismatch(self):
        result = classify(make_candidate(pets_allowed=False), make_intent(pets=True))

        assert result.verdict == MatchVerdict.MISMATCH
        assert result.reasons[0].code == ReasonCode.PETS_NOT_ALLOWED

    def test_pets_unknown_is_unknown(self):
        result = classify(make_candidate(pets_allowed=None), make_intent(pets=True))

        assert result.verdict == MatchVerdict.UNKNOWN
        assert result.reasons[0].code == ReasonCode.PETS_UNKNOWN

    def test_pets_ignored_when_not_wanted(self):
        result = classify(make_candidate(pets_allowed=None), make_intent(pets=False))

        assert result.verdict == MatchVerdict.STRONG

    def test_failure_outranks_missing_data(self):
        result = classify(
            make_candidate(pets_allowed=None, bedrooms=1), make_intent(pets=True)
        )

        assert result.verdict == MatchVerdict.MISMATCH
        assert result.description.startswith("Too few bedrooms")
        codes = [r.code for r in result.reasons]
        assert ReasonCode.PETS_UNKNOWN in codes

    def test_missing_data_lists_every_gap(self):
        result = classify(
            make_candidate(pets_allowed=None, bedrooms=None), make_intent(pets=True)
        )

        assert result.verdict == MatchVerdict.UNKNOWN
        assert len(result.reasons) == 2

    def test_date_as_iso_string(self):
        result = classify(make_candidate(stay_start_date="2024-07-01"), self.intent)

        assert result.verdict == MatchVerdict.STRONG

    def test_same_input_same_result(self):
        candidate = make_candidate(bedrooms=None)

        assert classify(candidate, self.intent) == classify(candidate, self.intent)

    def test_weak_is_never_produced(self):
        variants = [
            make_candidate(),
            make_candidate(bedrooms=None),
            make_candidate(bedrooms=1),
            make_candidate(pets_allowed=None),
            make_candidate(stay_nights=4),
        ]
        for candidate in variants:
            for intent in (self.intent, make_intent(pets=True)):
                assert classify(candidate, intent).verdict != MatchVerdict.WEAK


class TestEvaluateCandidate:
    """Test cases for evaluate_candidate()."""

    def test_attaches_series_key(self):
        result = evaluate_candidate(make_candidate(), make_intent(), "haven")

        assert result.verdict == MatchVerdict.STRONG
        assert result.series_key is not None
        assert len(result.series_key) == 64

    def test_mismatches_still_keyed(self):
        result = evaluate_candidate(make_candidate(stay_nights=3), make_intent(), "haven")

        assert result.verdict == MatchVerdict.MISMATCH
        assert result.series_key is not None

    def test_malformed_candidate_degrades_to_unknown(self):
        result = evaluate_candidate(make_candidate(stay_start_date="not a date"), make_intent(), "haven")

        assert result.verdict == MatchVerdict.UNKNOWN
        assert result.reasons[0].code == ReasonCode.INCOMPLETE_DATA
        assert result.description.startswith("Incomplete data")
        assert result.series_key is None


def test_is_alertable():
    assert is_alertable(MatchVerdict.STRONG)
    assert not is_alertable(MatchVerdict.WEAK)
    assert is_alertable(MatchVerdict.WEAK, allow_weak=True)
    assert not is_alertable(MatchVerdict.UNKNOWN, allow_weak=True)
    assert not is_alertable(MatchVerdict.MISMATCH)
