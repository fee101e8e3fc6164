"""Assemble the LMS import CSV from the merged view."""

from dataclasses import dataclass
from typing import Optional

from .common import serialize_csv
from .reconcile import (
    GradeStats,
    compute_final_headers,
    compute_stats,
    match_summary,
    merge_records,
    primary_column,
    resolve_points_map,
)


@dataclass
class ReconcileResult:
    final_headers: list
    records: list
    points_map: dict
    stats: Optional[GradeStats]
    csv_text: str

    @property
    def matched_count(self):
        return match_summary(self.records)[0]

    @property
    def total_count(self):
        return len(self.records)


def build_output(final_headers, merged_records, points_map):
    return serialize_csv(final_headers, [r.merged for r in merged_records], points_map)


def reconcile_tables(target, source, mappings, rules=None):
    """
    Run the whole merge for one target/source pair.

    Args:
        target: Table parsed from the LMS export (roster and output template)
        source: Table parsed from the quiz platform export
        mappings: list of Mapping
        rules: MatchRules, or None for the defaults

    Returns:
        ReconcileResult with the merged rows, points, stats, and CSV text
    """
    final_headers = compute_final_headers(target.headers, mappings)
    records = merge_records(target, source, mappings, rules)
    points_map = resolve_points_map(
        target.points_possible_row, mappings, final_headers, target.headers
    )
    stats = compute_stats(records, primary_column(mappings))

    return ReconcileResult(
        final_headers=final_headers,
        records=records,
        points_map=points_map,
        stats=stats,
        csv_text=build_output(final_headers, records, points_map),
    )
