"""Propose/confirm workflow.

Automated producers never write canonical values. Their proposals are checked
against the current provenance and, when eligible, staged with status
``proposed`` until a person confirms them. Human sources are applied directly
as ``confirmed``.

Every read-decide-write cycle for one field runs under a per-field lock and
writes with compare-and-set on the field version, retrying a bounded number of
times when another writer got there first.
"""

from __future__ import annotations

import math
import threading
from collections import Counter
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from contextgraph.domain.errors import (
    ConcurrentWriteError,
    FieldStoreError,
    MalformedProposalError,
    ProposalStateError,
    StoreTimeoutError,
)
from contextgraph.domain.model import (
    Alternative,
    ConfirmedField,
    DecisionReason,
    Field,
    FieldKey,
    FieldStatus,
    HumanKind,
    HumanSource,
    ProvenanceTag,
    is_empty_value,
    parse_source,
    source_name,
)
from contextgraph.domain.resolution import Decision, decide, utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from contextgraph.domain.model import Proposal, SourceKind
    from contextgraph.domain.policy import SourcePolicy
    from contextgraph.domain.ports import FieldStore

log = getLogger(__name__)

DEFAULT_MAX_ALTERNATIVES = 5


class OutcomeKind(StrEnum):
    PROPOSED = "proposed"
    APPLIED = "applied"
    BLOCKED = "blocked"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True, kw_only=True)
class ProposalOutcome:
    key: str
    source: str
    kind: OutcomeKind
    reason: DecisionReason | None = None
    message: str | None = None
    merged: bool = False

    @property
    def domain(self) -> str:
        return self.key.partition(".")[0]

    @property
    def wrote_value(self) -> bool:
        return self.kind in {OutcomeKind.PROPOSED, OutcomeKind.APPLIED}


@dataclass(frozen=True, slots=True)
class ProposalError:
    key: str
    message: str
    retryable: bool = False


@dataclass(slots=True)
class ProposeResult:
    proposed: int = 0
    blocked: int = 0
    applied: int = 0
    merged: int = 0
    errors: list[ProposalError] = field(default_factory=list["ProposalError"])
    proposed_keys: list[str] = field(default_factory=list[str])
    applied_keys: list[str] = field(default_factory=list[str])
    outcomes: list[ProposalOutcome] = field(default_factory=list["ProposalOutcome"])

    def record(self, outcome: ProposalOutcome) -> None:
        self.outcomes.append(outcome)
        match outcome.kind:
            case OutcomeKind.PROPOSED:
                self.proposed += 1
                self.proposed_keys.append(outcome.key)
            case OutcomeKind.APPLIED:
                self.applied += 1
                self.applied_keys.append(outcome.key)
            case OutcomeKind.BLOCKED:
                self.blocked += 1
                if outcome.merged:
                    self.merged += 1
            case _:
                pass


@dataclass(frozen=True, slots=True, kw_only=True)
class PendingProposal:
    """A staged value waiting for review, with the reason it is waiting."""

    key: FieldKey
    value: object
    tag: ProvenanceTag
    alternatives: tuple[Alternative, ...]
    explanation: str


class FieldLocks:
    """In-process lock per (entity, field).

    A lock lives only while someone holds or waits for it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, FieldKey], threading.Lock] = {}
        self._users: Counter[tuple[str, FieldKey]] = Counter()

    def active(self) -> int:
        """Number of (entity, field) slots currently held or awaited."""

        with self._guard:
            return len(self._locks)

    def _checkout(self, slot: tuple[str, FieldKey]) -> threading.Lock:
        with self._guard:
            self._users[slot] += 1
            return self._locks.setdefault(slot, threading.Lock())

    def _checkin(self, slot: tuple[str, FieldKey]) -> None:
        with self._guard:
            self._users[slot] -= 1
            if self._users[slot] <= 0:
                del self._users[slot]
                del self._locks[slot]

    @contextmanager
    def hold(
        self,
        entity_id: str,
        key: FieldKey,
        *,
        timeout: float | None = None,
    ) -> Iterator[None]:
        slot = (entity_id, key)
        lock = self._checkout(slot)
        try:
            if not lock.acquire(timeout=-1 if timeout is None else timeout):
                raise StoreTimeoutError(
                    f"Timed out waiting for the write lock on {entity_id}/{key}"
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(slot)


def _same_value(left: object, right: object) -> bool:
    try:
        return bool(left == right)
    except Exception:  # noqa: BLE001
        return False


@dataclass(slots=True)
class ProposalWorkflow:
    store: FieldStore
    policy: SourcePolicy
    clock: Callable[[], datetime] = utcnow
    timeout: float | None = None
    max_attempts: int = 3
    max_alternatives: int = DEFAULT_MAX_ALTERNATIVES
    locks: FieldLocks = field(default_factory=FieldLocks)

    # Producer entry point -----------------------------------------------------

    def propose(
        self,
        entity_id: str,
        proposals: Sequence[Proposal],
        *,
        cancel: threading.Event | None = None,
    ) -> ProposeResult:
        """Stage or apply each proposal; one outcome per proposal, never raises per item."""

        result = ProposeResult()
        for proposal in proposals:
            key_text = str(proposal.key)
            source_text = source_name(proposal.source)
            if cancel is not None and cancel.is_set():
                result.record(
                    ProposalOutcome(key=key_text, source=source_text, kind=OutcomeKind.CANCELLED)
                )
                continue
            try:
                outcome = self._process(entity_id, proposal)
            except MalformedProposalError as exc:
                log.warning("Malformed proposal %s from %s: %s", key_text, source_text, exc)
                result.errors.append(ProposalError(key=key_text, message=str(exc)))
                outcome = ProposalOutcome(
                    key=key_text, source=source_text, kind=OutcomeKind.ERROR, message=str(exc)
                )
            except FieldStoreError as exc:
                log.warning("Store failure for %s/%s: %s", entity_id, key_text, exc)
                result.errors.append(
                    ProposalError(key=key_text, message=str(exc), retryable=exc.retryable)
                )
                outcome = ProposalOutcome(
                    key=key_text, source=source_text, kind=OutcomeKind.ERROR, message=str(exc)
                )
            result.record(outcome)

        log.debug(
            "Proposals for %s: proposed=%s, applied=%s, blocked=%s, errors=%s",
            entity_id,
            result.proposed,
            result.applied,
            result.blocked,
            len(result.errors),
        )
        return result

    def _process(self, entity_id: str, proposal: Proposal) -> ProposalOutcome:
        if is_empty_value(proposal.value):
            return ProposalOutcome(
                key=str(proposal.key),
                source=source_name(proposal.source),
                kind=OutcomeKind.SKIPPED,
            )

        key = FieldKey.parse(proposal.key)
        try:
            source = parse_source(proposal.source)
        except ValueError as exc:
            raise MalformedProposalError(str(exc)) from exc
        confidence = self._validated_confidence(proposal, source, key.domain)
        if proposal.valid_for_days is not None and proposal.valid_for_days < 0:
            raise MalformedProposalError(
                f"valid_for_days must be >= 0, got {proposal.valid_for_days}"
            )

        def attempt(current: Field, now: datetime) -> ProposalOutcome:
            rejected = current.rejected_source
            if rejected is not None and source_name(rejected) == source_name(source):
                return self._refuse_rejected_source(entity_id, current, source)
            # A rejected field is open to any other source, as if it were empty.
            decision = decide(
                key.domain,
                () if current.status is FieldStatus.REJECTED else current.provenance,
                source,
                confidence,
                policy=self.policy,
                now=now,
            )
            tag = ProvenanceTag(
                source=source,
                confidence=confidence,
                written_at=now,
                valid_for_days=proposal.valid_for_days,
                note=proposal.evidence.describe() if proposal.evidence else None,
                source_run_id=proposal.source_run_id,
            )
            return self._apply(entity_id, current, proposal.value, tag, decision)

        return self._run_locked(entity_id, key, attempt)

    def _validated_confidence(self, proposal: Proposal, source: SourceKind, domain: str) -> float:
        if proposal.confidence is None:
            return self.policy.default_confidence(source, domain)
        try:
            confidence = float(proposal.confidence)
        except (TypeError, ValueError) as exc:
            msg = f"Confidence is not a number: {proposal.confidence!r}"
            raise MalformedProposalError(msg) from exc
        if math.isnan(confidence) or not 0.0 <= confidence <= 1.0:
            raise MalformedProposalError(f"Confidence must be within [0, 1], got {confidence}")
        return confidence

    def _apply(
        self,
        entity_id: str,
        current: Field,
        value: object,
        tag: ProvenanceTag,
        decision: Decision,
    ) -> ProposalOutcome:
        key = current.key
        source = source_name(tag.source)
        target_status = FieldStatus.CONFIRMED if tag.is_human else FieldStatus.PROPOSED

        if decision.allowed:
            latest = current.latest
            if (
                latest is not None
                and latest.source == tag.source
                and current.status is target_status
                and _same_value(current.value, value)
            ):
                return ProposalOutcome(
                    key=str(key), source=source, kind=OutcomeKind.UNCHANGED, reason=decision.reason
                )

            alternatives: tuple[Alternative, ...] = ()
            if target_status is FieldStatus.PROPOSED:
                alternatives = self._carry_alternatives(current, value)
            self.store.write_field(
                entity_id,
                key,
                value,
                tag,
                status=target_status,
                expected_version=current.version,
                alternatives=alternatives,
                timeout=self.timeout,
            )
            kind = OutcomeKind.APPLIED if tag.is_human else OutcomeKind.PROPOSED
            log.info(
                "%s %s/%s from %s (%s)",
                kind.capitalize(),
                entity_id,
                key,
                source,
                decision.reason,
            )
            return ProposalOutcome(key=str(key), source=source, kind=kind, reason=decision.reason)

        merged = False
        if (
            decision.reason is not DecisionReason.HUMAN_OVERRIDE
            and current.status is FieldStatus.PROPOSED
            and not _same_value(current.value, value)
        ):
            merged = self._merge_alternative(entity_id, current, Alternative(value, tag))
        log.info(
            "Blocked %s/%s from %s: %s%s",
            entity_id,
            key,
            source,
            decision.reason,
            " (kept as alternative)" if merged else "",
        )
        return ProposalOutcome(
            key=str(key),
            source=source,
            kind=OutcomeKind.BLOCKED,
            reason=decision.reason,
            message=decision.explain(),
            merged=merged,
        )

    def _refuse_rejected_source(
        self,
        entity_id: str,
        current: Field,
        source: SourceKind,
    ) -> ProposalOutcome:
        name = source_name(source)
        message = (
            f"A reviewer rejected the last value from {self.policy.display_name(name)}; "
            "it cannot propose this field again until another source or a person writes it."
        )
        log.info("Blocked %s/%s from %s: previously rejected", entity_id, current.key, name)
        return ProposalOutcome(
            key=str(current.key), source=name, kind=OutcomeKind.BLOCKED, message=message
        )

    def _carry_alternatives(self, current: Field, value: object) -> tuple[Alternative, ...]:
        carried = list(current.alternatives)
        latest = current.latest
        if current.status is FieldStatus.PROPOSED and latest is not None and current.has_value:
            carried.insert(0, Alternative(current.value, latest))
        kept = [alt for alt in carried if not _same_value(alt.value, value)]
        return self._dedupe(kept)

    def _merge_alternative(self, entity_id: str, current: Field, candidate: Alternative) -> bool:
        for existing in current.alternatives:
            if existing.tag.source == candidate.tag.source and _same_value(
                existing.value, candidate.value
            ):
                return False
        merged = self._dedupe([candidate, *current.alternatives])
        self.store.update_alternatives(
            entity_id,
            current.key,
            merged,
            expected_version=current.version,
            timeout=self.timeout,
        )
        return True

    def _dedupe(self, alternatives: list[Alternative]) -> tuple[Alternative, ...]:
        unique: list[Alternative] = []
        for alternative in alternatives:
            if any(
                other.tag.source == alternative.tag.source
                and _same_value(other.value, alternative.value)
                for other in unique
            ):
                continue
            unique.append(alternative)
        return tuple(unique[: self.max_alternatives])

    # Review actions -----------------------------------------------------------

    def confirm(
        self,
        entity_id: str,
        key: FieldKey | str,
        *,
        by: HumanKind = HumanKind.USER,
        note: str | None = None,
    ) -> ConfirmedField:
        """Promote the staged value of ``key`` to canonical through a human write."""

        field_key = FieldKey.parse(key)

        def attempt(current: Field, now: datetime) -> ConfirmedField:
            self._require_pending(entity_id, current)
            latest = current.latest
            staged_by = self.policy.display_name(latest.source) if latest else "unknown"
            return self._human_write(
                entity_id,
                current,
                current.value,
                by=by,
                now=now,
                note=note or f"Confirmed proposal from {staged_by}",
            )

        return self._run_locked(entity_id, field_key, attempt)

    def confirm_alternative(
        self,
        entity_id: str,
        key: FieldKey | str,
        index: int,
        *,
        by: HumanKind = HumanKind.USER,
        note: str | None = None,
    ) -> ConfirmedField:
        """Promote one of the secondary values instead of the staged one."""

        field_key = FieldKey.parse(key)

        def attempt(current: Field, now: datetime) -> ConfirmedField:
            self._require_pending(entity_id, current)
            if not 0 <= index < len(current.alternatives):
                raise ProposalStateError(
                    f"{entity_id}/{field_key} has no alternative #{index} "
                    f"({len(current.alternatives)} available)"
                )
            chosen = current.alternatives[index]
            return self._human_write(
                entity_id,
                current,
                chosen.value,
                by=by,
                now=now,
                note=note
                or f"Confirmed alternative from {self.policy.display_name(chosen.tag.source)}",
            )

        return self._run_locked(entity_id, field_key, attempt)

    def reject(
        self,
        entity_id: str,
        key: FieldKey | str,
        *,
        by: HumanKind = HumanKind.USER,
        note: str | None = None,
    ) -> Field:
        """Discard the staged value.

        The field is cleared with status ``rejected`` and the reviewer's tag is
        appended after the rejected one. Only the rejected source is kept from
        proposing again; any other source may stage new evidence.
        """

        field_key = FieldKey.parse(key)

        def attempt(current: Field, now: datetime) -> Field:
            self._require_pending(entity_id, current)
            latest = current.latest
            rejected = self.policy.display_name(latest.source) if latest else "unknown"
            tag = self._human_tag(by, now=now, note=note or f"Rejected proposal from {rejected}")
            cleared = self.store.write_field(
                entity_id,
                field_key,
                None,
                tag,
                status=FieldStatus.REJECTED,
                expected_version=current.version,
                timeout=self.timeout,
            )
            log.info("Rejected %s/%s from %s by %s", entity_id, field_key, rejected, by)
            return cleared

        return self._run_locked(entity_id, field_key, attempt)

    def write_human(
        self,
        entity_id: str,
        key: FieldKey | str,
        value: object,
        *,
        by: HumanKind = HumanKind.USER,
        note: str | None = None,
    ) -> ConfirmedField:
        """Apply an operator edit directly as canonical."""

        field_key = FieldKey.parse(key)

        def attempt(current: Field, now: datetime) -> ConfirmedField:
            return self._human_write(entity_id, current, value, by=by, now=now, note=note)

        return self._run_locked(entity_id, field_key, attempt)

    def pending(self, entity_id: str, *, domain: str | None = None) -> list[PendingProposal]:
        """Staged proposals, most confident first, then most recent."""

        staged = [
            current
            for current in self.store.list_fields(entity_id, timeout=self.timeout)
            if current.status is FieldStatus.PROPOSED
            and current.latest is not None
            and (domain is None or current.key.domain == domain)
        ]
        pending = [self._describe_pending(current) for current in staged]
        pending.sort(key=lambda item: (-item.tag.confidence, -item.tag.written_at.timestamp()))
        return pending

    def _describe_pending(self, current: Field) -> PendingProposal:
        tag = current.latest
        assert tag is not None
        explanation = (
            f"Proposed by {self.policy.display_name(tag.source)} "
            f"with confidence {tag.confidence:.2f}; automated sources need a person "
            f"to confirm before the value becomes canonical."
        )
        if current.alternatives:
            explanation += f" {len(current.alternatives)} alternative value(s) available."
        return PendingProposal(
            key=current.key,
            value=current.value,
            tag=tag,
            alternatives=current.alternatives,
            explanation=explanation,
        )

    # Internals ----------------------------------------------------------------

    def _require_pending(self, entity_id: str, current: Field) -> None:
        if current.status is not FieldStatus.PROPOSED:
            raise ProposalStateError(
                f"{entity_id}/{current.key} has no pending proposal (status={current.status})"
            )

    def _human_tag(self, by: HumanKind, *, now: datetime, note: str | None) -> ProvenanceTag:
        source = HumanSource(by)
        return ProvenanceTag(
            source=source,
            confidence=self.policy.default_confidence(source),
            written_at=now,
            note=note,
        )

    def _human_write(
        self,
        entity_id: str,
        current: Field,
        value: object,
        *,
        by: HumanKind,
        now: datetime,
        note: str | None,
    ) -> ConfirmedField:
        tag = self._human_tag(by, now=now, note=note)
        decision = decide(
            current.key.domain,
            current.provenance,
            tag.source,
            tag.confidence,
            policy=self.policy,
            now=now,
        )
        if not decision.allowed:
            raise ProposalStateError(
                f"Human write to {entity_id}/{current.key} was refused: {decision.explain()}"
            )
        written = self.store.write_field(
            entity_id,
            current.key,
            value,
            tag,
            status=FieldStatus.CONFIRMED,
            expected_version=current.version,
            timeout=self.timeout,
        )
        log.info("Confirmed %s/%s by %s", entity_id, current.key, by)
        return ConfirmedField.from_field(written)

    def _run_locked[T](
        self,
        entity_id: str,
        key: FieldKey,
        attempt: Callable[[Field, datetime], T],
    ) -> T:
        with self.locks.hold(entity_id, key, timeout=self.timeout):
            tries = 1
            while True:
                current = self.store.get_field(entity_id, key, timeout=self.timeout)
                try:
                    return attempt(current or Field.empty(key), self.clock())
                except ConcurrentWriteError:
                    if tries >= self.max_attempts:
                        raise
                    log.info(
                        "Version conflict on %s/%s (attempt %s/%s), retrying",
                        entity_id,
                        key,
                        tries,
                        self.max_attempts,
                    )
                    tries += 1
