"""
Grade Merger - transfers grades from a quiz platform export into an LMS
gradebook export and writes an import-ready CSV.
"""

import sys
from pathlib import Path

import yaml

from .common import load_table
from .config import ConfigError, load_settings
from .mapper import Mapping, can_proceed, extract_points, is_new_column, propose_mappings
from .output import reconcile_tables
from .reconcile import unmatched_report


UNMATCHED_REPORT_NAME = 'unmatched_students.csv'


def read_text(filepath):
    """Read an export as text, dropping a UTF-8 byte order mark if present."""
    with open(filepath, 'r', encoding='utf-8-sig') as f:
        return f.read()


def load_mappings_file(filepath):
    """
    Load mappings saved by `gradebridge propose -o`.

    Expected YAML:
        - source: Quiz 1
          target: Quiz 1 (1234)
          points: "15"
    """
    with open(filepath, 'r', encoding='utf-8') as f:
        entries = yaml.safe_load(f) or []

    if not isinstance(entries, list):
        raise ConfigError(f"Mappings file must contain a list: {filepath}")

    mappings = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ConfigError(f"Each mapping must be a mapping with source/target keys: {entry!r}")
        points = entry.get('points')
        mappings.append(Mapping(
            source_column=str(entry.get('source') or ''),
            target_column=str(entry.get('target') or ''),
            points=None if points is None else str(points),
        ))
    return mappings


def save_mappings_file(mappings, filepath):
    entries = [
        {'source': m.source_column, 'target': m.target_column, 'points': m.points}
        for m in mappings
    ]
    with open(filepath, 'w', encoding='utf-8') as f:
        yaml.safe_dump(entries, f, sort_keys=False, allow_unicode=True)


def parse_map_args(map_args, points_hints=None, default_points='10'):
    """
    Turn --map "SOURCE=TARGET" arguments into mappings.

    A bare "SOURCE" maps to a new column of the same name.
    """
    mappings = []
    for arg in map_args:
        source, sep, target = arg.partition('=')
        source = source.strip()
        target = target.strip() if sep else source
        mappings.append(Mapping(
            source_column=source,
            target_column=target,
            points=extract_points(source, points_hints, default_points),
        ))
    return mappings


def check_files(*paths):
    for filepath in paths:
        if filepath and not Path(filepath).exists():
            print(f"ERROR: File not found: {filepath}")
            sys.exit(1)


def load_settings_or_exit(config_file):
    try:
        return load_settings(config_file)
    except ConfigError as e:
        print(f"ERROR: {e}")
        sys.exit(1)


def print_mappings(mappings, target_headers):
    for m in mappings:
        if is_new_column(m, target_headers):
            print(f"   {m.source_column} -> {m.target_column}  [new, {m.points or '?'} pts]")
        else:
            print(f"   {m.source_column} -> {m.target_column}")


def run_propose(source_file, target_file, output_file=None, config_file=None, quiet=False):
    """
    Print the Import All proposal for a source/target pair.

    Args:
        source_file: Quiz platform CSV path
        target_file: LMS gradebook CSV path
        output_file: Optional YAML path to save the proposal for editing
        config_file: Optional settings YAML
        quiet: Suppress the per-mapping listing
    """
    check_files(source_file, target_file, config_file)
    settings = load_settings_or_exit(config_file)

    source = load_table(read_text(source_file))
    target = load_table(read_text(target_file))

    if source.is_empty or target.is_empty:
        print("ERROR: Both files need a header row")
        sys.exit(1)

    mappings = propose_mappings(
        source.headers, target.headers, source.points_possible_row,
        keywords=settings.identity_keywords, default_points=settings.default_points,
    )

    new_count = sum(1 for m in mappings if is_new_column(m, target.headers))
    print(f"\nProposed {len(mappings)} mappings ({new_count} new columns)")
    if not quiet:
        print_mappings(mappings, target.headers)

    if output_file:
        save_mappings_file(mappings, output_file)
        print(f"\nSaved mappings: {output_file}")

    return mappings


def run_merge(source_file, target_file, mappings_file=None, map_args=None,
              output_file=None, output_dir='.', analyze=False, config_file=None,
              quiet=False, summarizer=None):
    """
    Run the merge workflow.

    Args:
        source_file: Quiz platform CSV path
        target_file: LMS gradebook CSV path
        mappings_file: YAML mappings (from `propose -o`); takes precedence
        map_args: list of "SOURCE=TARGET" strings
        output_file: Output file name (default from settings)
        output_dir: Output directory
        analyze: Also print an AI narrative of the grade statistics
        config_file: Optional settings YAML
        quiet: Suppress verbose output
        summarizer: Summarizer to use for --analyze (default: Gemini)
    """
    check_files(source_file, target_file, mappings_file, config_file)
    settings = load_settings_or_exit(config_file)
    verbose = not quiet

    source = load_table(read_text(source_file))
    target = load_table(read_text(target_file))

    if source.is_empty or target.is_empty:
        print("ERROR: Both files need a header row")
        sys.exit(1)

    if verbose:
        print(f"\nLoaded source: {Path(source_file).name}")
        print(f"   Students: {len(source.rows)}")
        print(f"Loaded target: {Path(target_file).name}")
        print(f"   Students: {len(target.rows)}")

    if mappings_file:
        try:
            mappings = load_mappings_file(mappings_file)
        except ConfigError as e:
            print(f"ERROR: {e}")
            sys.exit(1)
    elif map_args:
        mappings = parse_map_args(map_args, source.points_possible_row, settings.default_points)
    else:
        mappings = propose_mappings(
            source.headers, target.headers, source.points_possible_row,
            keywords=settings.identity_keywords, default_points=settings.default_points,
        )

    if not can_proceed(mappings):
        print("ERROR: Every mapping needs both a source and a target column")
        sys.exit(1)

    missing = [m.source_column for m in mappings if m.source_column not in source.headers]
    if missing:
        print(f"ERROR: Source columns not found: {', '.join(missing)}")
        sys.exit(1)

    if verbose:
        print("\nMappings:")
        print_mappings(mappings, target.headers)

    print("\nGrade Merger")
    print("=" * 60)

    result = reconcile_tables(target, source, mappings, settings.match)

    print(f"\nMatched {result.matched_count} of {result.total_count} students")

    if result.stats:
        stats = result.stats
        print(f"\nStatistics for '{mappings[0].target_column}':")
        print(f"   Average: {stats.average:.1f}")
        print(f"   Median: {stats.median:g}")
        print(f"   Min: {stats.minimum:g}  Max: {stats.maximum:g}")
        for label, count in stats.distribution:
            print(f"   {label:>7}: {count}")

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    output_path = out / (output_file or settings.output_filename)
    with open(output_path, 'w', encoding='utf-8', newline='') as f:
        f.write(result.csv_text)
    print(f"\nWriting output file:\n   {output_path}")

    unmatched = unmatched_report(result.records, target.headers)
    if len(unmatched) > 0:
        unmatched_path = out / UNMATCHED_REPORT_NAME
        unmatched.to_csv(unmatched_path, index=False, encoding='utf-8-sig')
        print(f"\n   WARNING: {unmatched_path}")
        print(f"      {len(unmatched)} students not found in the source file")

    if analyze and result.stats:
        from .advisory import AdvisoryAnalysis, GeminiSummarizer

        if summarizer is None:
            summarizer = GeminiSummarizer(settings.gemini_api_key, settings.model)
        analysis = AdvisoryAnalysis(summarizer)
        future = analysis.request(result.stats)
        print(f"\nAnalysis:\n   {future.result()}")
        analysis.shutdown()

    print("\nDone!")
    return result
