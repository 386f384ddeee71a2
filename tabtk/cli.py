# tabtk/cli.py

import argparse
import importlib.util
import logging
import sys
from pathlib import Path

from . import config
from .connection import get_all_drivers
from .exceptions import TransferError
from .exporter import Delimiter
from .logging_utils import errors_logged, setup_logging

logger = logging.getLogger(__name__)

DELIMITERS = {'pipe': Delimiter.PIPE, 'tab': Delimiter.TAB, 'comma': Delimiter.COMMA}


def _read_query(args) -> str:
    if args.file:
        return Path(args.file).read_text(encoding='utf-8')
    return args.query


def drivers():
    """Show registered database drivers and whether their modules are installed."""
    print(f"{'Driver':<20} {'Database':<11} {'Priority':<9} Status")
    print("-" * 48)
    for name, info in sorted(get_all_drivers().items(), key=lambda x: (x[1]['database_type'], x[1]['priority'])):
        module_name = info.get('module', name)
        status = "✓" if importlib.util.find_spec(module_name) else "✗"
        print(f"{name:<20} {info['database_type']:<11} {info['priority']:<9} {status}")
    print("\n* Lower priority = preferred")
    return 0


def export(args):
    query = _read_query(args)
    with config.connect(args.connection) as engine:
        count = engine.write_query_to_file(query, args.output, DELIMITERS[args.delimiter])
    print(f"Wrote {count} rows to {args.output}")
    return 0


def export_sheet(args):
    query = _read_query(args)
    with config.connect(args.connection) as engine:
        if Path(args.workbook).exists():
            engine.open_workbook(args.workbook)
        else:
            engine.create_workbook(args.workbook)
        count = engine.write_query_to_sheet(query, args.sheet)
    print(f"Wrote {count} rows to {args.workbook}[{args.sheet}]")
    return 0


def load(args):
    validate = not args.no_validate
    with config.connect(args.connection) as engine:
        if Path(args.input).suffix.lower() in ('.xls', '.xlsx', '.xlsm'):
            count = engine.bulk_load_sheet(args.input, args.table, sheet_name=args.sheet, validate=validate)
        else:
            count = engine.bulk_load_file(args.input, args.table, delimiter=DELIMITERS[args.delimiter],
                                          has_header=not args.no_header, validate=validate)
    print(f"Loaded {count} rows into {args.table}")
    return 0


def _add_query_arguments(parser):
    parser.add_argument('connection', help='Connection name from the config file')
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--query', '-q', help='SQL query text')
    source.add_argument('--file', '-f', help='File containing the SQL query')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='tabtk', description='TabTK command-line utilities')
    parser.add_argument('--config', '-c', help='Config file (default ./tabtk.yml or ~/.config/tabtk.yml)')
    parser.add_argument('--log', metavar='JOB_NAME',
                        help='Write log files for this job name (see logging section of the config file)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # drivers
    subparsers.add_parser('drivers', help='List database drivers and whether they are installed')

    # export
    export_parser = subparsers.add_parser('export', help='Export query results to a delimited text file')
    _add_query_arguments(export_parser)
    export_parser.add_argument('output', help='Output file')
    export_parser.add_argument('--delimiter', '-d', choices=sorted(DELIMITERS), default='pipe',
                               help='Field delimiter (default pipe)')

    # export-sheet
    sheet_parser = subparsers.add_parser('export-sheet', help='Export query results to a worksheet')
    _add_query_arguments(sheet_parser)
    sheet_parser.add_argument('workbook', help='Workbook file. Created if it does not exist.')
    sheet_parser.add_argument('sheet', help='Worksheet name. Replaced if it exists.')

    # load
    load_parser = subparsers.add_parser('load', help='Bulk load a delimited file or worksheet into a table')
    load_parser.add_argument('connection', help='Connection name from the config file')
    load_parser.add_argument('input', help='Delimited text file or Excel workbook')
    load_parser.add_argument('table', help='Destination table')
    load_parser.add_argument('--sheet', help='Worksheet name (default first sheet)')
    load_parser.add_argument('--delimiter', '-d', choices=sorted(DELIMITERS), default='pipe',
                             help='Field delimiter for text files (default pipe)')
    load_parser.add_argument('--no-header', action='store_true',
                             help='Text file has no header row. Columns map by position.')
    load_parser.add_argument('--no-validate', action='store_true',
                             help='Skip type checks against the destination table')

    # generate-key
    subparsers.add_parser('generate-key', help='Generate encryption key')

    # store-key
    key_parser = subparsers.add_parser('store-key',
                                       help='Store encryption key in system keyring (generate if not provided)')
    key_parser.add_argument('key', nargs='?', default=None,
                            help='Encryption key to store. If omitted, a new key is generated and stored.')
    key_parser.add_argument('--force', action='store_true',
                            help='Overwrite existing encryption key in system keyring')

    # encrypt-password
    pwd_parser = subparsers.add_parser('encrypt-password', help='Encrypt a password')
    pwd_parser.add_argument('password', nargs='?', help='Password to encrypt')

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.config:
            config.set_config_file(args.config)
        if args.log:
            setup_logging(args.log)
        if args.command == 'drivers':
            return drivers()
        elif args.command == 'export':
            return export(args)
        elif args.command == 'export-sheet':
            return export_sheet(args)
        elif args.command == 'load':
            return load(args)
        elif args.command == 'generate-key':
            print(config.generate_encryption_key())
            return 0
        elif args.command == 'store-key':
            return 0 if config.store_key(args.key, force=args.force) else 1
        elif args.command == 'encrypt-password':
            print(config.encrypt_password(args.password))
            return 0
    except (TransferError, ValueError, FileNotFoundError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if args.log and errors_logged():
            print(f"Errors were logged to {errors_logged()}", file=sys.stderr)


if __name__ == '__main__':
    sys.exit(main())
