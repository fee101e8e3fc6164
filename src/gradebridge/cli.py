"""CLI entry point for gradebridge - quiz platform to LMS gradebook merging."""

import argparse
import logging


def build_parser():
    parser = argparse.ArgumentParser(
        prog='gradebridge',
        description='Merge quiz platform grade exports into LMS gradebook imports',
    )
    parser.add_argument(
        '--verbose', '-v', action='store_true',
        help='Show debug logging (detected match columns, analysis errors)',
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    # --- propose subcommand ---
    propose_parser = subparsers.add_parser(
        'propose',
        help='Propose column mappings from source assignments to gradebook columns',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Example:
    gradebridge propose mom_export.csv canvas_export.csv
    gradebridge propose mom_export.csv canvas_export.csv -o mappings.yaml
""",
    )
    propose_parser.add_argument('source', help='Quiz platform CSV (e.g. MyOpenMath export)')
    propose_parser.add_argument('target', help='LMS gradebook CSV (e.g. Canvas export)')
    propose_parser.add_argument(
        '--output', '-o', default=None,
        help='Save the proposed mappings as YAML for editing',
    )
    propose_parser.add_argument(
        '--config', '-c', default=None,
        help='Settings YAML file (optional)',
    )
    propose_parser.add_argument(
        '--quiet', '-q', action='store_true',
        help='Only print the summary line',
    )

    # --- merge subcommand ---
    merge_parser = subparsers.add_parser(
        'merge',
        help='Merge source grades into the gradebook and write an import CSV',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Example:
    gradebridge merge mom_export.csv canvas_export.csv
    gradebridge merge mom_export.csv canvas_export.csv --mappings mappings.yaml -o import.csv
    gradebridge merge mom.csv canvas.csv --map "Quiz 1=Quiz 1 (1234)" --map "Quiz 2" --analyze
""",
    )
    merge_parser.add_argument('source', help='Quiz platform CSV (e.g. MyOpenMath export)')
    merge_parser.add_argument('target', help='LMS gradebook CSV (e.g. Canvas export)')
    merge_parser.add_argument(
        '--mappings', '-m', default=None,
        help='Mappings YAML file (from "gradebridge propose -o")',
    )
    merge_parser.add_argument(
        '--map', dest='map_args', action='append', default=None, metavar='SOURCE[=TARGET]',
        help='Map one source column; repeatable. Without =TARGET a new column is created',
    )
    merge_parser.add_argument(
        '--output', '-o', default=None,
        help='Output file name (default: canvas_import_ready.csv)',
    )
    merge_parser.add_argument(
        '--output-dir', '-d', default='.',
        help='Output directory (default: current directory)',
    )
    merge_parser.add_argument(
        '--analyze', '-a', action='store_true',
        help='Print an AI summary of the grade statistics (needs GEMINI_API_KEY)',
    )
    merge_parser.add_argument(
        '--config', '-c', default=None,
        help='Settings YAML file (optional)',
    )
    merge_parser.add_argument(
        '--quiet', '-q', action='store_true',
        help='Suppress verbose output',
    )

    # --- serve subcommand ---
    serve_parser = subparsers.add_parser(
        'serve',
        help='Run the web interface',
    )
    serve_parser.add_argument('--host', default='127.0.0.1', help='Bind address (default: 127.0.0.1)')
    serve_parser.add_argument('--port', '-p', type=int, default=5000, help='Port (default: 5000)')
    serve_parser.add_argument(
        '--config', '-c', default=None,
        help='Settings YAML file (optional)',
    )

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    if args.command == 'propose':
        from .merge import run_propose
        run_propose(
            source_file=args.source,
            target_file=args.target,
            output_file=args.output,
            config_file=args.config,
            quiet=args.quiet,
        )
    elif args.command == 'merge':
        from .merge import run_merge
        run_merge(
            source_file=args.source,
            target_file=args.target,
            mappings_file=args.mappings,
            map_args=args.map_args,
            output_file=args.output,
            output_dir=args.output_dir,
            analyze=args.analyze,
            config_file=args.config,
            quiet=args.quiet,
        )
    elif args.command == 'serve':
        from .merge import check_files, load_settings_or_exit
        from .web import create_app
        check_files(args.config)
        app = create_app(settings=load_settings_or_exit(args.config))
        app.run(host=args.host, port=args.port)


if __name__ == '__main__':
    main()
