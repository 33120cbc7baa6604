import re

import pytest
from pydantic import ValidationError

from randomcall.db.models import Gender
from randomcall.matchmaking.errors import MatchTimeoutError
from randomcall.matchmaking.schemas import MatchUser, PollOutcome, PollStatus
from randomcall.matchmaking.utils import candidate_tiers, generate_call_id, normalize_gender

CALL_ID_PATTERN = re.compile(r"^call_[0-9a-z]+_[0-9a-z]{9}$")


def test_call_id_format():
    assert CALL_ID_PATTERN.match(generate_call_id())


def test_call_ids_are_unique():
    ids = {generate_call_id() for _ in range(500)}
    assert len(ids) == 500


@pytest.mark.parametrize(
    "gender, expected",
    [
        (Gender.MALE, [Gender.FEMALE, Gender.MALE, None]),
        (Gender.FEMALE, [Gender.MALE, Gender.FEMALE, None]),
        (Gender.OTHER, [Gender.OTHER, None]),
        (None, [None]),
    ],
)
def test_candidate_tiers(gender, expected):
    assert candidate_tiers(gender) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("male", Gender.MALE),
        (" Female ", Gender.FEMALE),
        ("non-binary", Gender.OTHER),
        ("", None),
        (None, None),
    ],
)
def test_normalize_gender(raw, expected):
    assert normalize_gender(raw) == expected


def test_match_user_coerces_id_and_gender():
    user = MatchUser(id=42, username="sam", gender="MALE")
    assert user.id == "42"
    assert user.gender == Gender.MALE


def test_match_user_requires_username():
    with pytest.raises(ValidationError):
        MatchUser(id="1")


def test_timed_out_outcome_raises():
    outcome = PollOutcome(status=PollStatus.TIMED_OUT, call_id="call_x")
    assert not outcome.matched
    with pytest.raises(MatchTimeoutError) as exc_info:
        outcome.raise_for_status()
    assert exc_info.value.code == "MATCH_TIMEOUT"
