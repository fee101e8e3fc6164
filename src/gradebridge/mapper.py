"""
Column Mapper - proposes and edits the correspondence between source
assignment columns and target gradebook columns.

Mapping lists are never edited in place; every edit function returns a new
list so callers can recompute the merged view from scratch.
"""

import re
from dataclasses import dataclass, replace
from typing import Optional

from .config import DEFAULT_IDENTITY_KEYWORDS


DEFAULT_POINTS = '10'


@dataclass(frozen=True)
class Mapping:
    source_column: str = ''
    target_column: str = ''
    points: Optional[str] = None

    def is_complete(self):
        return bool(self.source_column and self.target_column)


def extract_points(header, points_hints=None, default=DEFAULT_POINTS):
    """
    Work out the points possible for a source column.

    Precedence:
        1. the source file's Max row, digits and dots only ("Max: 20" -> "20")
        2. a "(15 pts)" / "(15 points)" / "(15)" suffix in the header
        3. the default

    Examples:
        "Quiz 1 (15 pts)" -> "15"
        "Quiz 1" -> "10"
    """
    if points_hints and points_hints.get(header):
        value = re.sub(r'[^\d.]', '', points_hints[header])
        if value:
            try:
                float(value)
                return value
            except ValueError:
                pass

    match = re.search(r'\((\d+)\s*(?:pts|points)?\)', header, re.IGNORECASE)
    if match:
        return match.group(1)

    return default


def is_assignment_column(header, keywords=DEFAULT_IDENTITY_KEYWORDS):
    """Identity columns (names, IDs, emails, sections) are never assignments."""
    header_lower = header.lower()
    return not any(keyword in header_lower for keyword in keywords)


def filter_assignment_columns(headers, keywords=DEFAULT_IDENTITY_KEYWORDS):
    return [h for h in headers if is_assignment_column(h, keywords)]


def propose_mappings(source_headers, target_headers, points_hints=None,
                     keywords=DEFAULT_IDENTITY_KEYWORDS, default_points=DEFAULT_POINTS):
    """
    Map every source assignment column in one go.

    A source column whose name matches a target assignment column
    (case-insensitive) updates that column; anything else becomes a new
    column with the source name.
    """
    target_columns = filter_assignment_columns(target_headers, keywords)

    mappings = []
    for source_col in filter_assignment_columns(source_headers, keywords):
        existing = None
        for target_col in target_columns:
            if target_col.lower() == source_col.lower():
                existing = target_col
                break

        mappings.append(Mapping(
            source_column=source_col,
            target_column=existing or source_col,
            points=extract_points(source_col, points_hints, default_points),
        ))

    return mappings


def is_new_column(mapping, target_headers):
    return bool(mapping.target_column) and mapping.target_column not in target_headers


def can_proceed(mappings):
    """A mapping list is usable once it is non-empty and every entry is complete."""
    return bool(mappings) and all(m.is_complete() for m in mappings)


def _replace_at(mappings, index, **changes):
    updated = list(mappings)
    updated[index] = replace(updated[index], **changes)
    return updated


def add_mapping(mappings, default_points=DEFAULT_POINTS):
    return list(mappings) + [Mapping('', '', default_points)]


def remove_mapping(mappings, index):
    return [m for i, m in enumerate(mappings) if i != index]


def set_source(mappings, index, column, points_hints=None, default_points=DEFAULT_POINTS):
    """Pick the source column; an empty target defaults to a new column of the same name."""
    if mappings[index].target_column:
        return _replace_at(mappings, index, source_column=column)
    return _replace_at(
        mappings, index,
        source_column=column,
        target_column=column,
        points=extract_points(column, points_hints, default_points),
    )


def choose_existing(mappings, index, target_column):
    return _replace_at(mappings, index, target_column=target_column)


def create_new(mappings, index, points_hints=None, default_points=DEFAULT_POINTS):
    """Switch to a new target column named after the current source column."""
    source = mappings[index].source_column
    return _replace_at(
        mappings, index,
        target_column=source,
        points=extract_points(source, points_hints, default_points),
    )


def switch_to_existing(mappings, index):
    """Drop the custom new-column name so an existing column can be picked."""
    return _replace_at(mappings, index, target_column='')


def rename_new(mappings, index, name):
    return _replace_at(mappings, index, target_column=name)


def set_points(mappings, index, points):
    return _replace_at(mappings, index, points=points)
