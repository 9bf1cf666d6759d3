from __future__ import annotations

from contextgraph.domain.model import DecisionReason, Field, FieldKey, FieldStatus
from contextgraph.domain.telemetry import (
    HydrationError,
    Snapshot,
    WriteRecord,
    summarize,
    take_snapshot,
)
from contextgraph.domain.workflow import OutcomeKind
from tests.helpers.fields import make_tag

EXPECTED = {"brand": ("positioning", "tagline", "valueProps"), "seo": ("seoScore",)}


def _filled(key: str, value: object) -> Field:
    return Field.empty(FieldKey.parse(key)).with_write(
        value, make_tag("brain"), status=FieldStatus.PROPOSED
    )


def test_snapshot_counts_only_schema_fields_with_values() -> None:
    snapshot = take_snapshot(
        [
            _filled("brand.positioning", "x"),
            _filled("brand.tagline", ""),
            _filled("brand.unlisted", "y"),
            _filled("seo.seoScore", 0),
        ],
        expected=EXPECTED,
    )

    assert snapshot.filled_in("brand") == frozenset({"positioning", "unlisted"})
    assert snapshot.domain_completeness("brand") == 33.33
    assert snapshot.domain_completeness("seo") == 100.0
    assert snapshot.completeness() == 50.0


def test_completeness_without_schema_is_zero() -> None:
    assert Snapshot().completeness() == 0.0
    assert Snapshot().domain_completeness("brand") == 0.0


def test_summarize_counts_writes_per_domain() -> None:
    before = take_snapshot([], expected=EXPECTED)
    after = take_snapshot(
        [_filled("brand.positioning", "x"), _filled("seo.seoScore", 80)], expected=EXPECTED
    )
    writes = [
        WriteRecord("brand_lab", "brand.positioning", OutcomeKind.PROPOSED),
        WriteRecord("seo_lab", "seo.seoScore", OutcomeKind.PROPOSED),
        WriteRecord("brain", "brand.tagline", OutcomeKind.BLOCKED, DecisionReason.LOWER_PRIORITY),
        WriteRecord("qbr", "brand.valueProps", OutcomeKind.APPLIED),
    ]

    telemetry = summarize(before, after, writes=writes, duration_ms=12, entity_id="e1")

    assert telemetry.completeness_before == 0.0
    assert telemetry.completeness_after == 50.0
    assert telemetry.completeness_change == 50.0
    assert dict(telemetry.fields_written_by_domain) == {"brand": 2, "seo": 1}
    assert telemetry.fields_written == 3
    assert dict(telemetry.domain_completeness) == {"brand": 33.33, "seo": 100.0}


def test_telemetry_as_dict_and_summary_line() -> None:
    telemetry = summarize(
        take_snapshot([], expected=EXPECTED),
        take_snapshot([_filled("seo.seoScore", 80)], expected=EXPECTED),
        writes=[
            WriteRecord(
                "seo_lab", "seo.seoScore", OutcomeKind.PROPOSED, DecisionReason.EMPTY_TARGET
            )
        ],
        errors=[HydrationError("brain", "boom", key="brand.tagline")],
        duration_ms=5,
        entity_id="e1",
    )

    payload = telemetry.as_dict()

    assert payload["entity_id"] == "e1"
    assert payload["fields_written_by_domain"] == {"seo": 1}
    assert payload["writes"] == [
        {
            "importer_id": "seo_lab",
            "key": "seo.seoScore",
            "outcome": "proposed",
            "reason": "empty_target",
        }
    ]
    assert payload["errors"] == [
        {"importer_id": "brain", "key": "brand.tagline", "message": "boom"}
    ]
    assert payload["cancelled"] is False
    assert telemetry.summary_line() == (
        "completeness 0.00% -> 25.00% (+25.00), written=1, errors=1, duration_ms=5"
    )
