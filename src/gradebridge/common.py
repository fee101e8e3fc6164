"""Shared CSV reading and writing for gradebook exports."""

import re
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd


POINTS_POSSIBLE_LABEL = 'Points Possible'


class EmptyInputError(ValueError):
    """Raised when a CSV text has no non-blank lines."""


@dataclass
class Table:
    """A parsed gradebook export."""

    headers: list = field(default_factory=list)
    rows: list = field(default_factory=list)
    points_possible_row: Optional[dict] = None

    @property
    def is_empty(self):
        return not self.headers

    def to_dataframe(self):
        """Return the data rows as a DataFrame, columns in header order."""
        return pd.DataFrame(self.rows, columns=self.headers, dtype=str)


def split_line(line):
    """
    Split a single CSV line into cleaned field values.

    Quotes toggle the quoted state and are kept in the field text, so the
    cleanup below can strip the wrapping pair and collapse doubled quotes.

    Examples:
        'a,"10,5",c' -> ['a', '10,5', 'c']
        '"She said ""hi"" today"' -> ['She said "hi" today']
    """
    fields = []
    current = []
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
            current.append(char)
        elif char == ',' and not in_quotes:
            fields.append(''.join(current))
            current = []
        else:
            current.append(char)
    fields.append(''.join(current))

    return [_clean_field(value) for value in fields]


def _clean_field(value):
    value = value.strip()
    value = re.sub(r'^"|"$', '', value)
    return value.replace('""', '"')


def is_points_possible_row(values):
    """
    Check whether a second CSV row carries points possible metadata.

    MyOpenMath exports put "Max" (or "Max Points") in the first column;
    Canvas puts "Points Possible" somewhere in the row.
    """
    first = values[0].strip().lower() if values else ''
    if first == 'max' or first == 'max points' or 'max' in first:
        return True
    return any(value.strip() == POINTS_POSSIBLE_LABEL for value in values)


def parse_csv(text):
    """
    Parse raw CSV text into a Table.

    Row 1 is always the header row. Row 2 is consumed as the points possible
    row when it looks like one; data rows follow. Rows shorter than the
    header row are padded with empty strings.

    Raises:
        EmptyInputError: if the text has no non-blank lines
    """
    lines = [line for line in re.split(r'\r?\n', text) if line.strip()]
    if not lines:
        raise EmptyInputError('CSV input contains no data')

    headers = split_line(lines[0])

    data_start = 1
    points_row = None
    if len(lines) > 1:
        second = split_line(lines[1])
        if is_points_possible_row(second):
            points_row = {
                header: second[i] if i < len(second) else ''
                for i, header in enumerate(headers)
            }
            data_start = 2

    rows = []
    for line in lines[data_start:]:
        values = split_line(line)
        rows.append({
            header: values[i] if i < len(values) else ''
            for i, header in enumerate(headers)
        })

    return Table(headers=headers, rows=rows, points_possible_row=points_row)


def load_table(text):
    """Parse CSV text, treating empty input as an empty table."""
    try:
        return parse_csv(text)
    except EmptyInputError:
        return Table()


def escape_csv_value(value):
    if value is None:
        return ''
    value = str(value)
    if ',' in value or '"' in value or '\n' in value:
        return '"' + value.replace('"', '""') + '"'
    return value


def serialize_csv(headers, records, points_map):
    """
    Write headers, a points possible row, and records back to CSV text.

    Only fields containing a comma, quote, or newline are quoted. Rows are
    joined with a single LF and there is no trailing newline.
    """
    lines = [','.join(escape_csv_value(header) for header in headers)]
    lines.append(','.join(
        escape_csv_value(points_map.get(header) or '') for header in headers
    ))
    for record in records:
        lines.append(','.join(
            escape_csv_value(record.get(header) or '') for header in headers
        ))
    return '\n'.join(lines)
