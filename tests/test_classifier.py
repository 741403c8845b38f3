import pytest

from contract_engine.classification.classifier import CueClassifier, create_classifier
from contract_engine.classification.cues import Cue, DocumentType, DEFAULT_CUES
from contract_engine.exceptions import ClassificationAmbiguous


def test_lease_supplement_with_custom_cues():
    cues = [
        Cue("Lease Supplement", 10, DocumentType.LEASE_SUPPLEMENT),
        Cue("Power Purchase Agreement", 10, DocumentType.PURCHASE_AGREEMENT),
    ]
    classifier = CueClassifier(cues=cues)

    result = classifier.classify("EQUIPMENT LEASE SUPPLEMENT dated March 1, 2024 between the parties")

    assert result.document_type is DocumentType.LEASE_SUPPLEMENT
    assert result.confidence == 1.0
    assert result.detected_cues == ["Lease Supplement"]
    assert not result.ambiguous


def test_no_cues_is_unclassified():
    result = create_classifier().classify("Meeting notes about the quarterly planning review.")

    assert result.document_type is DocumentType.UNCLASSIFIED
    assert result.confidence == 0.0
    assert result.detected_cues == []
    assert result.is_unclassified


def test_empty_text_is_unclassified():
    result = create_classifier().classify("")
    assert result.document_type is DocumentType.UNCLASSIFIED
    assert result.confidence == 0.0


def test_tie_returns_unclassified_with_alternatives():
    cues = [
        Cue("alpha", 10, DocumentType.FRAMEWORK_AGREEMENT),
        Cue("beta", 10, DocumentType.LEASE_SUPPLEMENT),
    ]
    result = CueClassifier(cues=cues).classify("alpha and beta")

    assert result.document_type is DocumentType.UNCLASSIFIED
    assert result.confidence == 0.0
    assert result.ambiguous
    assert {t for t, _ in result.alternative_types} == {
        DocumentType.FRAMEWORK_AGREEMENT,
        DocumentType.LEASE_SUPPLEMENT,
    }


def test_negative_cue_floors_score_at_zero():
    cues = [
        Cue("Lease Supplement", 10, DocumentType.LEASE_SUPPLEMENT),
        Cue("Purchase", 10, DocumentType.PURCHASE_AGREEMENT),
        Cue("Lessor", -15, DocumentType.PURCHASE_AGREEMENT),
    ]
    result = CueClassifier(cues=cues).classify("Lease Supplement. Lessor agrees to the Purchase option.")

    assert result.document_type is DocumentType.LEASE_SUPPLEMENT
    assert result.confidence == 1.0
    assert result.scores["purchase_agreement"] == 0.0


def test_penalties_reported_for_winner():
    cues = [
        Cue("Lease Supplement", 20, DocumentType.LEASE_SUPPLEMENT),
        Cue("Power Purchase Agreement", -5, DocumentType.LEASE_SUPPLEMENT),
        Cue("Power Purchase Agreement", 10, DocumentType.PURCHASE_AGREEMENT),
    ]
    result = CueClassifier(cues=cues).classify("Lease Supplement to the Power Purchase Agreement")

    assert result.document_type is DocumentType.LEASE_SUPPLEMENT
    assert result.penalized_by == ["Power Purchase Agreement"]
    assert result.confidence == pytest.approx(15 / 25)
    assert result.alternative_types == [(DocumentType.PURCHASE_AGREEMENT, pytest.approx(10 / 25))]


def test_filename_hint_scores_half_weight():
    cues = [
        Cue("Lease Supplement", 10, DocumentType.LEASE_SUPPLEMENT),
        Cue("O&M Agreement", 10, DocumentType.OM_AGREEMENT),
    ]
    result = CueClassifier(cues=cues).classify(
        "O&M Agreement for the site", filename="LeaseSupplement_03.pdf"
    )

    assert result.document_type is DocumentType.OM_AGREEMENT
    assert result.confidence == pytest.approx(10 / 15)
    assert result.scores["lease_supplement"] == 5.0


def test_regex_cue_matches_case_insensitively():
    cues = [Cue(r"\baddendum\s+no\.?\s*\d+", 5, DocumentType.EPC_ADDENDUM, is_regex=True, name="addendum")]
    result = CueClassifier(cues=cues).classify("ADDENDUM NO. 2 to the EPC contract")

    assert result.document_type is DocumentType.EPC_ADDENDUM
    assert result.detected_cues == ["addendum"]


def test_scan_limit_ignores_late_cues():
    cues = [Cue("Lease Supplement", 10, DocumentType.LEASE_SUPPLEMENT)]
    text = "x" * 100 + " Lease Supplement"

    assert CueClassifier(cues=cues, scan_limit=50).classify(text).is_unclassified
    assert not CueClassifier(cues=cues).classify(text).is_unclassified


def test_default_cues_classify_lease_document(lease_text):
    result = create_classifier().classify(lease_text)

    assert result.document_type is DocumentType.LEASE_SUPPLEMENT
    assert result.confidence == 1.0
    assert "Lease Supplement" in result.detected_cues
    assert "supplement-number" in result.detected_cues


@pytest.mark.parametrize("text", [
    "Power Purchase Agreement at $0.09 per kWh",
    "Framework Agreement with Lease Supplement and EPC Addendum references",
    "Operations and Maintenance Agreement; Lessor shall provide service",
    "Engineering, Procurement and Construction Addendum 4 to the contract",
    "random words only",
])
def test_confidence_bounds_and_winner_has_top_score(text):
    result = CueClassifier(cues=DEFAULT_CUES).classify(text)

    assert 0.0 <= result.confidence <= 1.0
    if result.is_unclassified:
        assert result.confidence == 0.0
    else:
        winner = result.scores[result.document_type.value]
        assert all(winner > s for t, s in result.scores.items() if t != result.document_type.value)
        assert result.confidence == pytest.approx(winner / sum(result.scores.values()))


def test_lease_supplement_scenario():
    cues = [
        Cue("Lease Supplement", 10, DocumentType.LEASE_SUPPLEMENT),
        Cue("Framework Agreement", 10, DocumentType.FRAMEWORK_AGREEMENT),
    ]
    result = CueClassifier(cues=cues).classify(
        "This Lease Supplement between Customer and Bloom Energy specifies rated capacity 2800 kW"
    )

    assert result.document_type is DocumentType.LEASE_SUPPLEMENT
    assert result.confidence == 1.0
    assert result.detected_cues == ["Lease Supplement"]
    assert result.alternative_types == []


def test_malformed_regex_cue_is_skipped(caplog):
    broken = Cue("(unclosed", 5, DocumentType.EPC_ADDENDUM, is_regex=True)
    valid = Cue("EPC Addendum", 10, DocumentType.EPC_ADDENDUM)

    classifier = CueClassifier(cues=[broken, valid])
    result = classifier.classify("EPC Addendum (unclosed parenthesis")

    assert classifier.cues == [valid]
    assert result.document_type is DocumentType.EPC_ADDENDUM
    assert result.detected_cues == ["EPC Addendum"]
    assert "Invalid cue pattern skipped" in caplog.text


def test_strict_tie_raises_with_candidates():
    cues = [
        Cue("alpha", 10, DocumentType.FRAMEWORK_AGREEMENT),
        Cue("beta", 10, DocumentType.LEASE_SUPPLEMENT),
    ]
    classifier = CueClassifier(cues=cues)

    with pytest.raises(ClassificationAmbiguous) as exc_info:
        classifier.classify("alpha and beta", strict=True)

    assert sorted(exc_info.value.candidates) == ["framework_agreement", "lease_supplement"]
    assert classifier.classify("alpha and beta").is_unclassified


def test_strict_has_no_effect_without_a_tie():
    cues = [Cue("alpha", 10, DocumentType.FRAMEWORK_AGREEMENT)]
    result = CueClassifier(cues=cues).classify("alpha", strict=True)
    assert result.document_type is DocumentType.FRAMEWORK_AGREEMENT
