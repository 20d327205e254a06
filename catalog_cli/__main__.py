#!/usr/bin/env python3
"""
Catalog CLI - duplicate detection, ignore list and merge for a book catalog.

Usage:
    catalog-cli find catalog.db -t book --title "Edge World" --author "J. Smith"
    catalog-cli scan catalog.db -t author --format json > duplicates.json
    catalog-cli ignore catalog.db -t author 5 9
    catalog-cli merge catalog.db -t author --primary 5 9

License: GPL v3
"""

import argparse
import dataclasses
import logging
import sys
from contextlib import contextmanager
from typing import List, Optional

from . import __version__
from .core.database import CatalogDB
from .core.errors import CatalogError
from .core.output import OutputFormatter
from .core.progress import NullProgress, ProgressReporter
from .core.schema import DUPLICATE_ENTITY_TYPES, MERGEABLE_ENTITY_TYPES
from .duplicates.finder import DuplicateFinder
from .duplicates.ignored import IgnoreList
from .duplicates.matching import DEFAULT_SETTINGS, MatchSettings
from .duplicates.merge import MergeEngine

logger = logging.getLogger('catalog_cli')


def _add_common_arguments(parser: argparse.ArgumentParser, formats=('text', 'json', 'csv')) -> None:
    parser.add_argument(
        'db_path',
        help='Path to the catalog SQLite database'
    )
    parser.add_argument(
        '--format', '-f',
        choices=list(formats),
        default='text',
        help='Output format (default: text)'
    )
    parser.add_argument(
        '--output', '-o',
        type=str,
        help='Output file path (default: stdout)'
    )
    parser.add_argument(
        '--debug', '-d',
        action='store_true',
        help='Enable debug logging'
    )


def _add_type_argument(parser: argparse.ArgumentParser, types) -> None:
    parser.add_argument(
        '--type', '-t',
        dest='entity_type',
        required=True,
        help=f"Entity type: {', '.join(types)}"
    )


def _add_match_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--min-score',
        type=int,
        default=int(DEFAULT_SETTINGS.min_score * 100),
        help='Minimum match score in percent (default: %(default)s)'
    )
    parser.add_argument(
        '--limit',
        type=int,
        default=DEFAULT_SETTINGS.max_matches,
        help='Maximum matches per query (default: %(default)s)'
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog='catalog-cli',
        description='Duplicate detection and merge tools for a book catalog',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Create an empty catalog:
    catalog-cli init catalog.db

  Find possible duplicates of a book before adding it:
    catalog-cli find catalog.db -t book --title "Edge World" --author "J. Smith"

  Look a book up by ISBN-13:
    catalog-cli find catalog.db -t book --isbn13 978-0-00-000000-1

  Scan all authors for duplicates:
    catalog-cli scan catalog.db -t author

  Mark two series as not duplicates:
    catalog-cli ignore catalog.db -t series 12 31

  Merge authors 9 and 14 into author 5:
    catalog-cli merge catalog.db -t author --primary 5 9 14

Match Types:
  exact_id    - Same identifier (ISBN-13)
  exact_name  - Same title or name after normalization
  fuzzy       - Similar title or name (edit distance, subtitle and prefix rules)
"""
    )

    parser.add_argument(
        '--version', '-V',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    init_parser = subparsers.add_parser('init', help='Create a catalog database')
    _add_common_arguments(init_parser, formats=('text', 'json'))

    info_parser = subparsers.add_parser('info', help='Show catalog information')
    _add_common_arguments(info_parser, formats=('text', 'json'))

    find_parser = subparsers.add_parser(
        'find', aliases=['match'],
        help='Find possible duplicates of one title, name or identifier'
    )
    _add_common_arguments(find_parser)
    _add_type_argument(find_parser, DUPLICATE_ENTITY_TYPES)
    _add_match_arguments(find_parser)
    find_parser.add_argument('--title', '--name', dest='title', help='Title or name to match')
    find_parser.add_argument('--author', '-a', help='Author of the book')
    find_parser.add_argument('--isbn13', help='ISBN-13 to look up (books only)')
    find_parser.add_argument('--identifier', '-i', help='Identifier to look up (books only)')
    find_parser.add_argument(
        '--identifier-type',
        choices=['isbn13', 'isbn10', 'asin', 'goodreads_id'],
        default='isbn13',
        help='Identifier column for --identifier (default: isbn13)'
    )
    find_parser.add_argument(
        '--entity-id', '-e',
        type=int,
        help='Match an existing entity (excluding itself and its ignored pairs)'
    )

    scan_parser = subparsers.add_parser(
        'scan', aliases=['duplicates', 'dups'],
        help='Scan every entity of a type for duplicates'
    )
    _add_common_arguments(scan_parser)
    _add_type_argument(scan_parser, DUPLICATE_ENTITY_TYPES)
    _add_match_arguments(scan_parser)
    scan_parser.add_argument(
        '--exact-only',
        action='store_true',
        help='Only report exact normalized-name and identifier matches'
    )
    scan_parser.add_argument(
        '--sort-by-size',
        action='store_true',
        help='Sort groups by size (largest first) instead of name'
    )
    scan_parser.add_argument(
        '--summary', '-S',
        action='store_true',
        help='Only show summary statistics, not individual groups'
    )
    scan_parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress progress output'
    )

    for name, help_text in (('ignore', 'Mark two entities as not duplicates'),
                            ('unignore', 'Remove a pair from the ignore list')):
        pair_parser = subparsers.add_parser(name, help=help_text)
        _add_common_arguments(pair_parser, formats=('text', 'json'))
        _add_type_argument(pair_parser, DUPLICATE_ENTITY_TYPES)
        pair_parser.add_argument('id1', type=int, help='First entity id')
        pair_parser.add_argument('id2', type=int, help='Second entity id')
        if name == 'ignore':
            pair_parser.add_argument('--actor', type=int, help='Id of the user ignoring the pair')

    ignored_parser = subparsers.add_parser('ignored', help='List ignored pairs')
    _add_common_arguments(ignored_parser)
    _add_type_argument(ignored_parser, DUPLICATE_ENTITY_TYPES)

    merge_parser = subparsers.add_parser('merge', help='Merge entities into a primary entity')
    _add_common_arguments(merge_parser, formats=('text', 'json'))
    _add_type_argument(merge_parser, MERGEABLE_ENTITY_TYPES)
    merge_parser.add_argument(
        '--primary', '-p',
        type=int,
        required=True,
        help='Id of the entity to keep'
    )
    merge_parser.add_argument(
        'merge_ids',
        type=int,
        nargs='+',
        help='Ids of the entities merged into the primary and removed'
    )

    return parser


def setup_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
        stream=sys.stderr,
    )


def match_settings(args) -> MatchSettings:
    """Build match settings from --min-score and --limit."""
    return dataclasses.replace(
        DEFAULT_SETTINGS,
        min_score=args.min_score / 100,
        max_matches=args.limit,
    )


@contextmanager
def open_output(args):
    """Yield an OutputFormatter writing to --output or stdout."""
    if args.output:
        output_file = open(args.output, 'w', encoding='utf-8')
    else:
        output_file = sys.stdout
    try:
        yield OutputFormatter(args.format, output_file)
    finally:
        if args.output:
            output_file.close()


def cmd_init(args) -> int:
    """Execute the init command."""
    with CatalogDB.create(args.db_path) as db, open_output(args) as out:
        out.write(out.output_status(f"Initialized catalog at {db.db_path}",
                                    database=str(db.db_path)))
    return 0


def cmd_info(args) -> int:
    """Execute the info command."""
    with CatalogDB(args.db_path, read_only=True) as db, open_output(args) as out:
        out.write(out.output_info(db.get_info()))
    return 0


def cmd_find(args) -> int:
    """Execute the find command."""
    identifier, identifier_type = args.identifier, args.identifier_type
    if args.isbn13:
        identifier, identifier_type = args.isbn13, 'isbn13'

    with CatalogDB(args.db_path, read_only=True) as db:
        finder = DuplicateFinder(db, settings=match_settings(args))
        matches = finder.find_matches(
            args.entity_type,
            title=args.title,
            author=args.author,
            identifier=identifier,
            identifier_type=identifier_type,
            entity_id=args.entity_id,
        )

    query = args.title or identifier or (f"#{args.entity_id}" if args.entity_id else '')
    with open_output(args) as out:
        out.write(out.output_matches(matches, args.entity_type, query))
    return 0


def cmd_scan(args) -> int:
    """Execute the scan command."""
    progress = NullProgress() if args.quiet else ProgressReporter(desc=f"Scanning {args.entity_type}")

    with CatalogDB(args.db_path, read_only=True) as db:
        finder = DuplicateFinder(db, settings=match_settings(args),
                                 progress_callback=progress.report)
        with progress:
            result = finder.scan(
                args.entity_type,
                fuzzy=not args.exact_only,
                sort_by_title=not args.sort_by_size,
            )

    with open_output(args) as out:
        if args.summary:
            out.write(out.output_summary(finder.get_summary(result)))
        else:
            out.write(out.output_scan(result))
    return 0


def cmd_ignore(args) -> int:
    """Execute the ignore and unignore commands."""
    with CatalogDB(args.db_path) as db:
        ignore_list = IgnoreList(db)
        if args.command == 'ignore':
            ignore_list.ignore(args.entity_type, args.id1, args.id2, actor_id=args.actor)
            message = f"Ignored {args.entity_type} pair {args.id1} / {args.id2}"
        else:
            ignore_list.unignore(args.entity_type, args.id1, args.id2)
            message = f"Removed ignored {args.entity_type} pair {args.id1} / {args.id2}"

    with open_output(args) as out:
        out.write(out.output_status(message, entity_type=args.entity_type,
                                    entity_id1=min(args.id1, args.id2),
                                    entity_id2=max(args.id1, args.id2)))
    return 0


def cmd_ignored(args) -> int:
    """Execute the ignored command."""
    with CatalogDB(args.db_path, read_only=True) as db:
        rows = IgnoreList(db).list_pairs(args.entity_type)

    with open_output(args) as out:
        out.write(out.output_ignored(rows, args.entity_type))
    return 0


def cmd_merge(args) -> int:
    """Execute the merge command."""
    with CatalogDB(args.db_path) as db:
        result = MergeEngine(db).merge(args.entity_type, args.primary, args.merge_ids)

    with open_output(args) as out:
        out.write(out.output_merge(result, args.entity_type, args.primary))
    return 0


COMMANDS = {
    'init': cmd_init,
    'info': cmd_info,
    'find': cmd_find,
    'match': cmd_find,
    'scan': cmd_scan,
    'duplicates': cmd_scan,
    'dups': cmd_scan,
    'ignore': cmd_ignore,
    'unignore': cmd_ignore,
    'ignored': cmd_ignored,
    'merge': cmd_merge,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(args.debug)

    try:
        return COMMANDS[args.command](args)
    except CatalogError as e:
        if args.format == 'json':
            print(OutputFormatter('json').output_error(e))
        else:
            print(f"Error: {e}", file=sys.stderr)
        return 1
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.debug:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
