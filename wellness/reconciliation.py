"""Deterministic merge of an incoming canonical record against stored state.

Activity records merge field by field: the stored value stays unless the
incoming value is present and non-zero. Zero-valid fields (intensity
minutes) take any present incoming value, zero included. Sub-activity lists
are only filled, never replaced.

Weights use recency-wins on the source timestamp instead: an older reading
never overwrites a newer one, whatever its values.

Merging the same input twice yields UNCHANGED on the second pass, which is
what makes imports idempotent.
"""

from wellness.domain.models import (
    ACTIVITY_METRIC_FIELDS,
    ZERO_VALID_FIELDS,
    DailyActivityRecord,
    MergeOutcome,
    WeightRecord,
)

_BODY_COMPOSITION_FIELDS = ("body_fat_pct", "bone_mass_kg", "bmr_kcal")


def _incoming_wins(name: str, incoming_value) -> bool:
    if incoming_value is None:
        return False
    if name in ZERO_VALID_FIELDS:
        return True
    return incoming_value != 0


def merge_activity(
    existing: DailyActivityRecord | None, incoming: DailyActivityRecord
) -> tuple[DailyActivityRecord, MergeOutcome]:
    if existing is None:
        return incoming.model_copy(deep=True), MergeOutcome.ADDED

    if existing.date != incoming.date:
        raise ValueError(f"Cannot merge {incoming.date} into record for {existing.date}")

    merged = existing.model_copy(deep=True)
    changed = False
    for name in ACTIVITY_METRIC_FIELDS:
        new_value = getattr(incoming, name)
        if _incoming_wins(name, new_value) and getattr(merged, name) != new_value:
            setattr(merged, name, new_value)
            changed = True

    if not merged.activities and incoming.activities:
        merged.activities = [dict(a) for a in incoming.activities]
        changed = True

    return merged, MergeOutcome.UPDATED if changed else MergeOutcome.UNCHANGED


def merge_weight(
    existing: WeightRecord | None, incoming: WeightRecord
) -> tuple[WeightRecord, MergeOutcome]:
    if existing is None:
        return incoming.model_copy(), MergeOutcome.ADDED

    if incoming.measured_at < existing.measured_at:
        return existing, MergeOutcome.SKIPPED

    merged = incoming.model_copy()
    for name in _BODY_COMPOSITION_FIELDS:
        if getattr(merged, name) is None:
            setattr(merged, name, getattr(existing, name))

    if merged == existing:
        return existing, MergeOutcome.UNCHANGED
    return merged, MergeOutcome.UPDATED
