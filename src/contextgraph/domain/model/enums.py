"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class HumanKind(StrEnum):
    """The closed set of human writers. Membership alone defines "human"."""

    USER = "user"
    MANUAL = "manual"
    QBR = "qbr"
    STRATEGY = "strategy"


class AutomatedKind(StrEnum):
    """Automated writers known to the default policy.

    Producers outside this list are still representable as automated sources;
    they simply rank lowest wherever the policy does not mention them.
    """

    BRAND_LAB = "brand_lab"
    AUDIENCE_LAB = "audience_lab"
    MEDIA_LAB = "media_lab"
    WEBSITE_LAB = "website_lab"
    UX_LAB = "ux_lab"
    SEO_LAB = "seo_lab"
    CONTENT_LAB = "content_lab"
    DEMAND_LAB = "demand_lab"
    OPS_LAB = "ops_lab"
    COMPETITION_LAB = "competition_lab"
    COMPETITION_V4 = "competition_v4"

    GAP_HEAVY = "gap_heavy"
    GAP_FULL = "gap_full"
    GAP_IA = "gap_ia"

    FCB = "fcb"
    BRAIN = "brain"
    INFERRED = "inferred"

    AIRTABLE = "airtable"
    IMPORT = "import"
    SETUP_WIZARD = "setup_wizard"
    ANALYTICS_GA4 = "analytics_ga4"
    ANALYTICS_GSC = "analytics_gsc"
    ANALYTICS_GADS = "analytics_gads"
    MEDIA_PROFILE = "media_profile"
    MEDIA_COCKPIT = "media_cockpit"
    MEDIA_MEMORY = "media_memory"
    EXTERNAL_ENRICHMENT = "external_enrichment"


class FieldStatus(StrEnum):
    EMPTY = "empty"
    PROPOSED = "proposed"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class DecisionReason(StrEnum):
    """Why the conflict-resolution engine allowed or blocked a write."""

    EMPTY_TARGET = "empty_target"
    HUMAN_OVERRIDE = "human_override"
    STALE_EXPIRED = "stale_expired"
    HIGHER_PRIORITY = "higher_priority"
    LOWER_PRIORITY = "lower_priority"
    CONFIDENCE_INSUFFICIENT = "confidence_insufficient"

    def describe(self, *, allowed: bool) -> str:
        """Return an operator-facing sentence for this reason."""

        if self is DecisionReason.HUMAN_OVERRIDE:
            if allowed:
                return "Human edits always take precedence over the current value."
            return "The current value was set by a person and cannot be changed by automation."
        return _REASON_MESSAGES[self]


_REASON_MESSAGES: dict[DecisionReason, str] = {
    DecisionReason.EMPTY_TARGET: "The field had no value yet.",
    DecisionReason.STALE_EXPIRED: "The current value is past its validity window.",
    DecisionReason.HIGHER_PRIORITY: "The incoming source outranks the current source.",
    DecisionReason.LOWER_PRIORITY: "The current source outranks the incoming source.",
    DecisionReason.CONFIDENCE_INSUFFICIENT: (
        "Both sources rank equally and the incoming confidence does not beat the current one."
    ),
}
