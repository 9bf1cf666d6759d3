from __future__ import annotations

import math
import threading

import pytest

from contextgraph.adapters.memory import InMemoryFieldStore
from contextgraph.domain.errors import ProposalStateError, StoreTimeoutError
from contextgraph.domain.model import (
    DecisionReason,
    Field,
    FieldKey,
    FieldStatus,
    HumanKind,
    Proposal,
)
from contextgraph.domain.policy import SourcePolicy
from contextgraph.domain.workflow import OutcomeKind, ProposalWorkflow
from tests.helpers.fields import FakeClock, FlakyStore, always_conflicting, make_proposal

ENTITY = "company-1"
POSITIONING = FieldKey("brand", "positioning")


def _field(store: InMemoryFieldStore, key: FieldKey | str) -> Field:
    stored = store.get_field(ENTITY, FieldKey.parse(key))
    assert stored is not None
    return stored


def test_automated_proposal_on_empty_field_is_staged(
    workflow: ProposalWorkflow,
    memory_store: InMemoryFieldStore,
) -> None:
    result = workflow.propose(
        ENTITY, [make_proposal("brand.positioning", "Premium for teams", "brand_lab", 0.85)]
    )

    assert result.proposed == 1
    assert result.applied == 0
    assert result.proposed_keys == ["brand.positioning"]
    stored = _field(memory_store, POSITIONING)
    assert stored is not None
    assert stored.status is FieldStatus.PROPOSED
    assert stored.value == "Premium for teams"
    assert stored.latest is not None
    assert stored.latest.confidence == pytest.approx(0.85)


def test_automated_proposal_against_confirmed_human_value_is_blocked(
    workflow: ProposalWorkflow,
    memory_store: InMemoryFieldStore,
) -> None:
    workflow.write_human(ENTITY, "objectives.kpiLabels", ["Leads"], by=HumanKind.USER)

    result = workflow.propose(
        ENTITY, [make_proposal("objectives.kpiLabels", ["Clicks"], "gap_full", 0.6)]
    )

    assert result.blocked == 1
    assert result.merged == 0
    outcome = result.outcomes[0]
    assert outcome.kind is OutcomeKind.BLOCKED
    assert outcome.reason is DecisionReason.HUMAN_OVERRIDE
    assert outcome.message is not None
    stored = _field(memory_store, "objectives.kpiLabels")
    assert stored is not None
    assert stored.value == ["Leads"]
    assert stored.status is FieldStatus.CONFIRMED


def test_human_proposals_are_applied_as_confirmed(
    workflow: ProposalWorkflow,
    memory_store: InMemoryFieldStore,
) -> None:
    result = workflow.propose(ENTITY, [make_proposal("brand.tagline", "Ship it", "strategy")])

    assert result.applied == 1
    assert result.applied_keys == ["brand.tagline"]
    stored = _field(memory_store, "brand.tagline")
    assert stored is not None
    assert stored.status is FieldStatus.CONFIRMED
    assert stored.latest is not None
    assert stored.latest.confidence == pytest.approx(0.95)


def test_blank_values_are_skipped_without_counting(workflow: ProposalWorkflow) -> None:
    result = workflow.propose(
        ENTITY,
        [
            make_proposal("brand.tagline", "   "),
            make_proposal("brand.valueProps", []),
            make_proposal("brand.toneOfVoice", None),
        ],
    )

    assert [outcome.kind for outcome in result.outcomes] == [OutcomeKind.SKIPPED] * 3
    assert (result.proposed, result.blocked, result.applied) == (0, 0, 0)
    assert result.errors == []


def test_malformed_items_become_errors_and_the_batch_continues(
    workflow: ProposalWorkflow,
) -> None:
    proposals = [
        make_proposal("nodomain", "x"),
        make_proposal("brand.tagline", "x", "brand_lab", 1.5),
        make_proposal("brand.tagline", "x", "brand_lab", math.nan),
        make_proposal("brand.tagline", "x", ""),
        make_proposal("brand.tagline", "x", "brand_lab", valid_for_days=-3),
        make_proposal("brand.positioning", "Good", "brand_lab"),
    ]

    result = workflow.propose(ENTITY, proposals)

    assert len(result.outcomes) == len(proposals)
    assert len(result.errors) == 5
    assert all(not error.retryable for error in result.errors)
    assert result.outcomes[-1].kind is OutcomeKind.PROPOSED


def test_missing_confidence_uses_the_policy_default(
    workflow: ProposalWorkflow,
    memory_store: InMemoryFieldStore,
) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.tagline", "x", "gap_ia")])

    stored = _field(memory_store, "brand.tagline")
    assert stored is not None
    assert stored.latest is not None
    assert stored.latest.confidence == pytest.approx(0.7)


def test_reproposing_the_same_value_is_unchanged(
    workflow: ProposalWorkflow,
    memory_store: InMemoryFieldStore,
) -> None:
    proposal = make_proposal("brand.positioning", "Premium", "brand_lab", 0.9)
    workflow.propose(ENTITY, [proposal])
    version = _field(memory_store, POSITIONING).version

    result = workflow.propose(
        ENTITY, [make_proposal("brand.positioning", "Premium", "brand_lab", 0.95)]
    )

    assert result.outcomes[0].kind is OutcomeKind.UNCHANGED
    assert result.proposed == 0
    assert _field(memory_store, POSITIONING).version == version


def test_equal_source_and_confidence_is_blocked(workflow: ProposalWorkflow) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.tagline", "A", "gap_full", 0.6)])

    result = workflow.propose(ENTITY, [make_proposal("brand.tagline", "A", "gap_full", 0.6)])

    assert result.outcomes[0].kind is OutcomeKind.BLOCKED
    assert result.outcomes[0].reason is DecisionReason.CONFIDENCE_INSUFFICIENT
    assert not result.outcomes[0].merged


def test_lower_priority_proposal_is_kept_as_an_alternative(
    workflow: ProposalWorkflow,
    memory_store: InMemoryFieldStore,
) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "Lab view", "brand_lab")])

    first = workflow.propose(ENTITY, [make_proposal("brand.positioning", "GAP view", "gap_heavy")])
    again = workflow.propose(ENTITY, [make_proposal("brand.positioning", "GAP view", "gap_heavy")])

    assert first.blocked == 1
    assert first.merged == 1
    assert first.outcomes[0].reason is DecisionReason.LOWER_PRIORITY
    assert again.blocked == 1
    assert again.merged == 0
    stored = _field(memory_store, POSITIONING)
    assert stored is not None
    assert stored.value == "Lab view"
    assert [alt.value for alt in stored.alternatives] == ["GAP view"]


def test_alternatives_are_capped_newest_first(
    memory_store: InMemoryFieldStore,
    policy: SourcePolicy,
    clock: FakeClock,
) -> None:
    workflow = ProposalWorkflow(store=memory_store, policy=policy, clock=clock, max_alternatives=2)
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "Lab view", "brand_lab")])

    for index in range(4):
        workflow.propose(ENTITY, [make_proposal("brand.positioning", f"v{index}", "brain")])

    stored = _field(memory_store, POSITIONING)
    assert stored is not None
    assert [alt.value for alt in stored.alternatives] == ["v3", "v2"]


def test_higher_priority_proposal_keeps_the_displaced_value_as_alternative(
    workflow: ProposalWorkflow,
    memory_store: InMemoryFieldStore,
) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "GAP view", "gap_heavy")])

    result = workflow.propose(
        ENTITY, [make_proposal("brand.positioning", "Lab view", "brand_lab")]
    )

    assert result.proposed == 1
    assert result.outcomes[0].reason is DecisionReason.HIGHER_PRIORITY
    stored = _field(memory_store, POSITIONING)
    assert stored is not None
    assert stored.value == "Lab view"
    assert stored.status is FieldStatus.PROPOSED
    assert [(alt.value, alt.tag.source.name) for alt in stored.alternatives] == [
        ("GAP view", "gap_heavy")
    ]


def test_stale_proposal_is_replaced_after_its_window(
    workflow: ProposalWorkflow,
    clock: FakeClock,
    memory_store: InMemoryFieldStore,
) -> None:
    workflow.propose(
        ENTITY, [make_proposal("brand.tagline", "Old", "brand_lab", 0.9, valid_for_days=30)]
    )
    clock.advance(days=31)

    result = workflow.propose(ENTITY, [make_proposal("brand.tagline", "New", "inferred", 0.2)])

    assert result.outcomes[0].reason is DecisionReason.STALE_EXPIRED
    assert _field(memory_store, "brand.tagline").value == "New"


def test_confirm_promotes_the_staged_value(
    workflow: ProposalWorkflow,
    memory_store: InMemoryFieldStore,
) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "Premium", "brand_lab")])

    confirmed = workflow.confirm(ENTITY, "brand.positioning", by=HumanKind.MANUAL)

    assert confirmed.value == "Premium"
    assert confirmed.tag.source.name == "manual"
    assert confirmed.tag.note == "Confirmed proposal from Brand Lab"
    stored = _field(memory_store, POSITIONING)
    assert stored is not None
    assert stored.status is FieldStatus.CONFIRMED
    assert stored.alternatives == ()


def test_confirmed_value_is_protected_from_every_automated_source(
    workflow: ProposalWorkflow,
) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "Premium", "brand_lab")])
    workflow.confirm(ENTITY, "brand.positioning")

    result = workflow.propose(
        ENTITY,
        [
            make_proposal("brand.positioning", "Other", source, 1.0)
            for source in ("brand_lab", "gap_heavy", "brain", "mystery")
        ],
    )

    assert result.blocked == 4
    assert {outcome.reason for outcome in result.outcomes} == {DecisionReason.HUMAN_OVERRIDE}


def test_confirm_requires_a_pending_proposal(workflow: ProposalWorkflow) -> None:
    with pytest.raises(ProposalStateError, match="no pending proposal"):
        workflow.confirm(ENTITY, "brand.positioning")

    workflow.write_human(ENTITY, "brand.positioning", "Set by hand")
    with pytest.raises(ProposalStateError):
        workflow.confirm(ENTITY, "brand.positioning")


def test_confirm_alternative(
    workflow: ProposalWorkflow,
    memory_store: InMemoryFieldStore,
) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "Lab view", "brand_lab")])
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "GAP view", "gap_heavy")])

    confirmed = workflow.confirm_alternative(ENTITY, "brand.positioning", 0)

    assert confirmed.value == "GAP view"
    assert confirmed.tag.note == "Confirmed alternative from GAP Heavy"
    assert _field(memory_store, POSITIONING).status is FieldStatus.CONFIRMED

    with pytest.raises(ProposalStateError):
        workflow.confirm_alternative(ENTITY, "brand.positioning", 0)


def test_confirm_alternative_out_of_range(workflow: ProposalWorkflow) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "Lab view", "brand_lab")])

    with pytest.raises(ProposalStateError, match="no alternative #3"):
        workflow.confirm_alternative(ENTITY, "brand.positioning", 3)


def test_reject_blocks_only_the_rejected_source(
    workflow: ProposalWorkflow,
    memory_store: InMemoryFieldStore,
) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "Meh", "brain")])

    cleared = workflow.reject(ENTITY, "brand.positioning", note="Off brand")
    again = workflow.propose(ENTITY, [make_proposal("brand.positioning", "Meh again", "brain")])

    assert cleared.value is None
    assert cleared.status is FieldStatus.REJECTED
    assert not cleared.is_human_pinned
    assert cleared.rejected_source is not None
    assert cleared.rejected_source.name == "brain"
    assert again.outcomes[0].kind is OutcomeKind.BLOCKED
    assert again.blocked == 1
    assert "rejected" in (again.outcomes[0].message or "")
    stored = _field(memory_store, POSITIONING)
    assert stored.status is FieldStatus.REJECTED
    assert stored.value is None
    assert stored.latest is not None
    assert stored.latest.note == "Off brand"


def test_other_sources_may_stage_after_a_rejection(
    workflow: ProposalWorkflow,
    memory_store: InMemoryFieldStore,
) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "Meh", "brain")])
    workflow.reject(ENTITY, "brand.positioning")

    result = workflow.propose(
        ENTITY, [make_proposal("brand.positioning", "Lab view", "brand_lab", 0.5)]
    )

    assert result.outcomes[0].kind is OutcomeKind.PROPOSED
    assert result.outcomes[0].reason is DecisionReason.EMPTY_TARGET
    stored = _field(memory_store, POSITIONING)
    assert stored.status is FieldStatus.PROPOSED
    assert stored.value == "Lab view"
    assert stored.rejected_source is None


def test_rejected_fields_cannot_be_rejected_twice(workflow: ProposalWorkflow) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "Meh", "brain")])
    workflow.reject(ENTITY, "brand.positioning")

    with pytest.raises(ProposalStateError, match="status=rejected"):
        workflow.reject(ENTITY, "brand.positioning")

def test_write_human_overrides_anything(workflow: ProposalWorkflow) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "Premium", "brand_lab")])
    workflow.write_human(ENTITY, "brand.positioning", "First", by=HumanKind.USER)

    confirmed = workflow.write_human(ENTITY, "brand.positioning", "Second", by=HumanKind.QBR)

    assert confirmed.value == "Second"
    assert confirmed.tag.source.name == "qbr"
    assert confirmed.version == 3


def test_pending_lists_staged_fields_by_confidence_then_recency(
    workflow: ProposalWorkflow,
    clock: FakeClock,
) -> None:
    workflow.propose(ENTITY, [make_proposal("brand.tagline", "A", "brand_lab", 0.7)])
    clock.advance(minutes=5)
    workflow.propose(ENTITY, [make_proposal("brand.positioning", "B", "brand_lab", 0.7)])
    workflow.propose(ENTITY, [make_proposal("audience.painPoints", ["C"], "audience_lab", 0.9)])
    workflow.write_human(ENTITY, "brand.toneOfVoice", "Calm")

    pending = workflow.pending(ENTITY)
    brand_only = workflow.pending(ENTITY, domain="brand")

    assert [str(item.key) for item in pending] == [
        "audience.painPoints",
        "brand.positioning",
        "brand.tagline",
    ]
    assert [str(item.key) for item in brand_only] == ["brand.positioning", "brand.tagline"]
    assert "Audience Lab" in pending[0].explanation


def test_store_failures_are_retryable_item_errors(policy: SourcePolicy, clock: FakeClock) -> None:
    store = FlakyStore(StoreTimeoutError("backend slow"))
    workflow = ProposalWorkflow(store=store, policy=policy, clock=clock)

    result = workflow.propose(
        ENTITY,
        [
            make_proposal("brand.tagline", "A", "brand_lab"),
            make_proposal("brand.positioning", "B", "brand_lab"),
        ],
    )

    assert result.outcomes[0].kind is OutcomeKind.ERROR
    assert result.errors[0].retryable
    assert result.outcomes[1].kind is OutcomeKind.PROPOSED


def test_version_conflicts_are_retried(policy: SourcePolicy, clock: FakeClock) -> None:
    store = FlakyStore(*always_conflicting(2))
    workflow = ProposalWorkflow(store=store, policy=policy, clock=clock, max_attempts=3)

    result = workflow.propose(ENTITY, [make_proposal("brand.tagline", "A", "brand_lab")])

    assert result.proposed == 1
    assert store.write_attempts == 3


def test_persistent_version_conflicts_become_errors(
    policy: SourcePolicy,
    clock: FakeClock,
) -> None:
    store = FlakyStore(*always_conflicting(3))
    workflow = ProposalWorkflow(store=store, policy=policy, clock=clock, max_attempts=3)

    result = workflow.propose(ENTITY, [make_proposal("brand.tagline", "A", "brand_lab")])

    assert result.outcomes[0].kind is OutcomeKind.ERROR
    assert result.errors[0].retryable
    assert store.write_attempts == 3


def test_cancelled_batches_stop_issuing_proposals(workflow: ProposalWorkflow) -> None:
    cancel = threading.Event()
    cancel.set()

    result = workflow.propose(
        ENTITY,
        [make_proposal("brand.tagline", "A"), make_proposal("brand.positioning", "B")],
        cancel=cancel,
    )

    assert [outcome.kind for outcome in result.outcomes] == [OutcomeKind.CANCELLED] * 2
    assert workflow.store.list_fields(ENTITY) == []


def test_lock_timeout_is_reported_as_a_store_error(
    workflow: ProposalWorkflow,
) -> None:
    held = threading.Event()
    release = threading.Event()

    def hold_lock() -> None:
        with workflow.locks.hold(ENTITY, FieldKey("brand", "tagline")):
            held.set()
            release.wait(5)

    holder = threading.Thread(target=hold_lock)
    holder.start()
    held.wait(5)
    try:
        blocked = ProposalWorkflow(
            store=workflow.store,
            policy=workflow.policy,
            clock=workflow.clock,
            timeout=0.05,
            locks=workflow.locks,
        )
        result = blocked.propose(ENTITY, [make_proposal("brand.tagline", "A")])
    finally:
        release.set()
        holder.join()

    assert result.outcomes[0].kind is OutcomeKind.ERROR
    assert "Timed out" in result.errors[0].message


def test_proposals_accept_field_keys_and_enum_sources(
    workflow: ProposalWorkflow,
    memory_store: InMemoryFieldStore,
) -> None:
    proposal = Proposal(key=POSITIONING, value="Typed", source=HumanKind.STRATEGY)

    result = workflow.propose(ENTITY, [proposal])

    assert result.applied == 1
    assert _field(memory_store, POSITIONING).status is FieldStatus.CONFIRMED


def test_field_locks_are_released_after_use(workflow: ProposalWorkflow) -> None:
    workflow.propose(
        ENTITY,
        [
            make_proposal("brand.positioning", "A", "brand_lab"),
            make_proposal("brand.tagline", "B", "brand_lab"),
        ],
    )
    workflow.write_human(ENTITY, "brand.tagline", "C")

    assert workflow.locks.active() == 0


def test_field_lock_survives_while_a_waiter_times_out(workflow: ProposalWorkflow) -> None:
    key = FieldKey("brand", "tagline")

    with workflow.locks.hold(ENTITY, key):
        with pytest.raises(StoreTimeoutError), workflow.locks.hold(ENTITY, key, timeout=0.01):
            pass
        assert workflow.locks.active() == 1

    assert workflow.locks.active() == 0
