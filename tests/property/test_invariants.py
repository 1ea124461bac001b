"""
Property-based tests for ledger invariants using Hypothesis.

These tests stress address normalization, enum parsing, feed windows and
merge-patch presence with random inputs.
"""

from hypothesis import given
from hypothesis import strategies as st

from initiative_ledger.actors import clean_address
from initiative_ledger.attestations import MAX_WINDOW, _clamp
from initiative_ledger.milestones import transition_event
from initiative_ledger.models import (
    InitiativeState,
    MilestonePatch,
    MilestoneStatus,
    parse_input,
    patch_values,
)

HEX = "0123456789abcdefABCDEF"

# ============================================================================
# Address Normalization
# ============================================================================


@given(st.text(alphabet=HEX, min_size=40, max_size=40))
def test_valid_address_is_lowercased(body: str):
    cleaned = clean_address("0x" + body)
    assert cleaned == ("0x" + body).lower()


@given(st.text(alphabet=HEX, min_size=40, max_size=40))
def test_clean_address_idempotent(body: str):
    once = clean_address("0x" + body)
    assert clean_address(once) == once


@given(st.text(alphabet=HEX).filter(lambda s: len(s) != 40))
def test_wrong_length_rejected(body: str):
    assert clean_address("0x" + body) is None


@given(st.text(max_size=60))
def test_clean_address_never_raises(raw: str):
    result = clean_address(raw)
    assert result is None or (len(result) == 42 and result == result.lower())


# ============================================================================
# Enum Parsing
# ============================================================================


@given(st.text(max_size=20))
def test_parse_never_raises(raw: str):
    parsed = InitiativeState.parse(raw)
    if raw in InitiativeState.known():
        assert parsed.value == raw
    elif raw != "unknown":
        assert parsed is InitiativeState.UNKNOWN


@given(st.text(max_size=20))
def test_transition_event_is_milestone_type(status: str):
    event = transition_event(status)
    assert event.startswith("milestone.")
    if MilestoneStatus.parse(status) not in (
        MilestoneStatus.SUBMITTED,
        MilestoneStatus.VERIFIED,
        MilestoneStatus.REJECTED,
    ):
        assert event == "milestone.updated"


# ============================================================================
# Feed Window
# ============================================================================


@given(st.one_of(st.none(), st.integers(min_value=-(10**9), max_value=10**9)))
def test_clamp_within_window(limit):
    assert 1 <= _clamp(limit) <= MAX_WINDOW


# ============================================================================
# Merge-Patch Presence
# ============================================================================

_MILESTONE_COLUMNS = {"status": "status", "evidence": "evidence_json", "payout": "payout_json"}

_patch_fields = st.fixed_dictionaries(
    {},
    optional={
        "status": st.sampled_from(["pending", "submitted", "verified", "rejected"]),
        "evidence": st.one_of(st.none(), st.fixed_dictionaries({"url": st.text(max_size=10)})),
        "payout": st.one_of(st.none(), st.fixed_dictionaries({"amount": st.integers(0, 1000)})),
    },
)


@given(_patch_fields)
def test_patch_writes_exactly_supplied_fields(data: dict):
    patch = parse_input(MilestonePatch, data)
    values = patch_values(patch, _MILESTONE_COLUMNS)
    assert set(values) == {_MILESTONE_COLUMNS[k] for k in data}


@given(_patch_fields)
def test_explicit_null_is_kept_as_clear(data: dict):
    patch = parse_input(MilestonePatch, data)
    values = patch_values(patch, _MILESTONE_COLUMNS)
    for key, value in data.items():
        if value is None:
            assert values[_MILESTONE_COLUMNS[key]] is None
