import math

import pytest

from attendance_backend.matching import BiometricTemplate, CandidateMatcher, CaptureSample, match, score

from conftest import make_print


def _roster(*entries):
    return [BiometricTemplate(person_id=person_id, image=image) for person_id, image in entries]


def test_empty_roster_is_no_match():
    result = match(CaptureSample(make_print(1)), [])
    assert not result.matched
    assert result.best_score == -math.inf


def test_capture_matches_its_own_template():
    image = make_print(1)
    roster = _roster(("P1", make_print(2)), ("P2", image), ("P3", make_print(3)))

    result = match(CaptureSample(image.copy()), roster)

    assert result.matched
    assert result.person_id == "P2"
    assert result.score == pytest.approx(1.0)


def test_first_maximum_wins():
    image = make_print(1)
    roster = _roster(("P1", make_print(2)), ("P2", image), ("P3", image.copy()))

    result = match(CaptureSample(image), roster)

    assert result.person_id == "P2"


def test_below_threshold_reports_best_score():
    roster = _roster(("P1", make_print(2)), ("P2", make_print(3)))
    capture = CaptureSample(make_print(1))

    result = match(capture, roster)

    assert not result.matched
    assert result.person_id is None
    expected = max(score(capture.image, t.image) for t in roster)
    assert result.best_score == pytest.approx(expected)


def test_threshold_is_inclusive():
    capture = CaptureSample(make_print(1))
    template = make_print(2)
    exact = score(capture.image, template)

    result = match(capture, _roster(("P1", template)), threshold=exact)

    assert result.matched
    assert result.person_id == "P1"


def test_incompatible_templates_are_skipped():
    image = make_print(1)
    roster = _roster(("small", make_print(1, shape=(20, 20))), ("P1", image))

    result = match(CaptureSample(image), roster)

    assert result.matched
    assert result.person_id == "P1"


def test_only_incompatible_templates_is_no_match():
    roster = _roster(("small", make_print(1, shape=(20, 20))))

    result = match(CaptureSample(make_print(1)), roster)

    assert not result.matched
    assert result.best_score == -math.inf


def test_match_is_deterministic():
    roster = _roster(("P1", make_print(2)), ("P2", make_print(3)))
    capture = CaptureSample(make_print(2))
    assert match(capture, roster) == match(capture, roster)


def test_candidate_matcher_uses_configured_threshold():
    image = make_print(1)
    roster = [BiometricTemplate(person_id="P1", image=image, person_name="Alice")]

    assert CandidateMatcher().match(CaptureSample(image), roster).person_name == "Alice"
    assert not CandidateMatcher(threshold=1.01).match(CaptureSample(image), roster).matched
