"""
Reconciliation Engine - pairs target gradebook rows with source rows and
merges mapped grades into a copy of each target row.

Everything here is a pure function of (target table, source table, mappings)
and is recomputed from scratch on every call.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

import pandas as pd

from .common import POINTS_POSSIBLE_LABEL
from .config import MatchRules


logger = logging.getLogger(__name__)

BAND_EDGES = [0, 60, 70, 80, 90, 100]

_LEADING_FLOAT = re.compile(r'^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)')


@dataclass
class MatchColumns:
    target_id: Optional[str] = None
    source_id: Optional[str] = None
    target_name: Optional[str] = None
    source_name: Optional[str] = None
    source_first_name: Optional[str] = None
    source_last_name: Optional[str] = None


@dataclass
class MergedRecord:
    original: dict
    merged: dict
    matched: bool
    source: Optional[dict] = None


@dataclass
class GradeStats:
    average: float
    median: float
    minimum: float
    maximum: float
    distribution: list
    count: int


def compute_final_headers(target_headers, mappings):
    """Target headers followed by each new mapping target, once, in order."""
    headers = list(target_headers)
    for mapping in mappings:
        column = mapping.target_column
        if column and column not in headers:
            headers.append(column)
    return headers


def resolve_points_map(target_points_row, mappings, final_headers, target_headers):
    """
    Combine the target's own points row with points declared on new columns.

    The first column always carries the "Points Possible" label when it has
    no value of its own; the LMS import expects it there.
    """
    points = dict(target_points_row or {})

    for mapping in mappings:
        column = mapping.target_column
        if column and column not in target_headers and mapping.points:
            points[column] = mapping.points

    if final_headers:
        first = final_headers[0]
        if not points.get(first):
            points[first] = POINTS_POSSIBLE_LABEL

    return points


def find_name_part_column(headers, part):
    """Find a 'First name' / 'Last Name' style column."""
    for col in headers:
        col_lower = col.lower()
        if part in col_lower and 'name' in col_lower:
            return col
    return None


def detect_match_columns(target_headers, source_headers, rules=None):
    rules = rules or MatchRules()

    columns = MatchColumns(
        target_id=rules.target_id.find(target_headers),
        source_id=rules.source_id.find(source_headers),
        target_name=rules.target_name.find(target_headers),
        source_name=rules.source_name.find(source_headers),
    )

    # A full-name column such as "Student" takes precedence over the parts.
    first_col = find_name_part_column(source_headers, 'first')
    last_col = find_name_part_column(source_headers, 'last')
    if first_col and last_col and columns.source_name in (None, first_col, last_col):
        columns.source_first_name = first_col
        columns.source_last_name = last_col

    logger.debug(
        "Match columns: target id=%r name=%r; source id=%r name=%r (first=%r, last=%r)",
        columns.target_id, columns.target_name, columns.source_id,
        columns.source_name, columns.source_first_name, columns.source_last_name,
    )
    return columns


def normalize_name(name):
    """
    Normalize a student name for comparison.

    Example: " O'Brien, Pat " -> "obrien, pat"
    """
    return re.sub(r'[\'"]', '', (name or '').lower()).strip()


def source_display_name(row, columns):
    """The source row's name, composed as 'Last, First' when split across columns."""
    if columns.source_first_name and columns.source_last_name:
        last = row.get(columns.source_last_name, '')
        first = row.get(columns.source_first_name, '')
        return f"{last}, {first}"
    if columns.source_name:
        return row.get(columns.source_name, '')
    return None


def match_record(target_row, source_rows, columns):
    """
    Find the source row for one target row.

    Student IDs are compared as exact strings and the first hit wins. Without
    an ID hit, names are compared after normalization. Returns None when
    nothing matches.
    """
    if columns.target_id and columns.source_id:
        target_id = target_row.get(columns.target_id, '')
        for source_row in source_rows:
            if source_row.get(columns.source_id, '') == target_id:
                return source_row

    has_source_name = columns.source_name or (
        columns.source_first_name and columns.source_last_name
    )
    if columns.target_name and has_source_name:
        target_name = normalize_name(target_row.get(columns.target_name, ''))
        for source_row in source_rows:
            if normalize_name(source_display_name(source_row, columns)) == target_name:
                return source_row

    return None


def match(target_row, target, source, rules=None):
    columns = detect_match_columns(target.headers, source.headers, rules)
    return match_record(target_row, source.rows, columns)


def merge_records(target, source, mappings, rules=None):
    """
    Build the merged view of every target row.

    Each merged row starts as a copy of the target row with every final
    header present. When a source row matched, every complete mapping copies
    its source value into the target column.
    """
    final_headers = compute_final_headers(target.headers, mappings)
    columns = detect_match_columns(target.headers, source.headers, rules)
    complete = [m for m in mappings if m.is_complete()]

    records = []
    for target_row in target.rows:
        source_row = match_record(target_row, source.rows, columns)

        merged = dict(target_row)
        for header in final_headers:
            if header not in merged:
                merged[header] = ''

        if source_row is not None:
            for mapping in complete:
                merged[mapping.target_column] = source_row.get(mapping.source_column, '')

        records.append(MergedRecord(
            original=target_row,
            merged=merged,
            matched=source_row is not None,
            source=source_row,
        ))

    return records


def parse_grade(value):
    """Read the leading number of a grade cell: '85%' -> 85.0, 'abc' -> None."""
    found = _LEADING_FLOAT.match(value or '')
    if not found:
        return None
    return float(found.group(1))


def primary_column(mappings):
    """Statistics are reported for the first mapping's target column."""
    if not mappings:
        return None
    return mappings[0].target_column


def compute_stats(merged_records, column):
    """
    Summarize the numeric grades in one column over matched rows.

    The median is the element at index n // 2 of the sorted grades, which is
    the upper middle value for even counts. Returns None when there are no
    numeric grades.
    """
    if not column:
        return None

    values = [parse_grade(r.merged.get(column, '')) for r in merged_records if r.matched]
    grades = pd.Series([v for v in values if v is not None], dtype=float)
    if grades.empty:
        return None

    ordered = grades.sort_values().reset_index(drop=True)
    median = ordered.iloc[len(ordered) // 2]

    distribution = []
    last = len(BAND_EDGES) - 2
    for i, low in enumerate(BAND_EDGES[:-1]):
        high = BAND_EDGES[i + 1]
        if i == last:
            in_band = (grades >= low) & (grades <= high)
        else:
            in_band = (grades >= low) & (grades < high)
        distribution.append((f"{low}-{high}", int(in_band.sum())))

    over = int((grades > BAND_EDGES[-1]).sum())
    if over > 0:
        distribution.append((f">{BAND_EDGES[-1]}", over))

    return GradeStats(
        average=float(grades.mean()),
        median=float(median),
        minimum=float(grades.min()),
        maximum=float(grades.max()),
        distribution=distribution,
        count=len(grades),
    )


def match_summary(merged_records):
    """Return (matched, total)."""
    matched = sum(1 for r in merged_records if r.matched)
    return matched, len(merged_records)


def unmatched_report(merged_records, headers):
    """Target rows with no source match, as a DataFrame."""
    rows = [r.original for r in merged_records if not r.matched]
    return pd.DataFrame(rows, columns=list(headers), dtype=str)
