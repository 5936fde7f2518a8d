#!/usr/bin/env python3
"""
SIE CLI - Command line interface for SIE file analysis and import.

Lists accounts, verifications and aggregated periods from SIE files with
optional CSV output, and imports aggregated periods into a financial store.
"""

import argparse
import asyncio
import csv
import logging
import sys
from typing import Dict, List, Optional

import sie_aggregator
import sie_config
import sie_import
import sie_parser

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    """Configure logging. Logs go to stderr so CSV on stdout stays clean."""
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def list_accounts(sie_data: sie_parser.SieData, year_index: int = 0,
                  non_zero_only: bool = False, csv_output: bool = False) -> None:
    """List accounts with their opening and closing balances for one fiscal year."""

    opening: Dict[int, float] = {
        b.account_number: b.balance for b in sie_data.opening_balances if b.year_index == year_index
    }
    closing: Dict[int, float] = {
        b.account_number: b.balance for b in sie_data.closing_balances if b.year_index == year_index
    }

    account_numbers = set(sie_data.accounts) | set(opening) | set(closing)

    account_data = []
    for account_number in sorted(account_numbers):
        opening_balance = opening.get(account_number, 0.0)
        closing_balance = closing.get(account_number, 0.0)

        if non_zero_only and abs(opening_balance) < 0.01 and abs(closing_balance) < 0.01:
            continue

        bucket = sie_aggregator.classify_account(account_number)
        account_data.append({
            'number': account_number,
            'name': sie_data.account_name(account_number),
            'bucket': bucket.field_name if bucket else '',
            'opening_balance': opening_balance,
            'closing_balance': closing_balance,
        })

    if csv_output:
        writer = csv.DictWriter(sys.stdout, fieldnames=['number', 'name', 'bucket', 'opening_balance', 'closing_balance'])
        writer.writeheader()
        writer.writerows(account_data)
    else:
        print(f"{'Account':<10} {'Name':<30} {'Bucket':<20} {'Opening':>15} {'Closing':>15}")
        print("-" * 94)
        for account in account_data:
            print(f"{account['number']:<10} {account['name']:<30} {account['bucket']:<20} "
                  f"{account['opening_balance']:>15.2f} {account['closing_balance']:>15.2f}")

        print(f"\nTotal accounts: {len(account_data)}")


def show_summary(sie_data: sie_parser.SieData, csv_output: bool = False) -> None:
    """Show a summary of the SIE file."""

    current_year = sie_data.fiscal_year(0)
    summary_data = {
        'company_name': sie_data.company.name,
        'organization_number': sie_data.company.organization_number,
        'address': sie_data.company.address or '',
        'sni_code': sie_data.company.sni_code or '',
        'period_start': current_year.start_date if current_year else '',
        'period_end': current_year.end_date if current_year else '',
        'format': sie_data.format,
        'program': sie_data.program,
        'program_version': sie_data.program_version,
        'generated_date': sie_data.generated_date,
        'fiscal_years': len(sie_data.fiscal_years),
        'total_accounts': len(sie_data.accounts),
        'opening_balances': len(sie_data.opening_balances),
        'closing_balances': len(sie_data.closing_balances),
        'period_balances': len(sie_data.period_balances),
        'total_transactions': len(sie_data.transactions),
        'total_entries': sum(len(t.entries) for t in sie_data.transactions),
        'dimensions': len(sie_data.dimensions),
        'skipped_records': len(sie_data.issues),
    }

    if csv_output:
        writer = csv.DictWriter(sys.stdout, fieldnames=summary_data.keys())
        writer.writeheader()
        writer.writerow(summary_data)
        return

    print("SIE File Summary")
    print("=" * 50)
    print()

    print("Company Information:")
    print(f"  Name: {summary_data['company_name']}")
    print(f"  Org. number: {summary_data['organization_number']}")
    if summary_data['address']:
        print(f"  Address: {summary_data['address']}")
    if summary_data['sni_code']:
        print(f"  SNI: {summary_data['sni_code']}")
    print(f"  Period: {summary_data['period_start']} - {summary_data['period_end']}")
    print()

    print("File Information:")
    print(f"  Format: {summary_data['format']}")
    if summary_data['program']:
        print(f"  Generated by: {summary_data['program']} {summary_data['program_version']}".rstrip())
    if summary_data['generated_date']:
        print(f"  Generated on: {summary_data['generated_date']}")
    print()

    print("Data Summary:")
    print(f"  Fiscal Years: {summary_data['fiscal_years']}")
    print(f"  Total Accounts: {summary_data['total_accounts']}")
    print(f"  Total Transactions: {summary_data['total_transactions']}")
    print(f"  Total Entries: {summary_data['total_entries']}")
    if summary_data['opening_balances'] > 0:
        print(f"  Opening Balances: {summary_data['opening_balances']}")
    if summary_data['closing_balances'] > 0:
        print(f"  Closing Balances: {summary_data['closing_balances']}")
    if summary_data['period_balances'] > 0:
        print(f"  Period Balances: {summary_data['period_balances']}")
    if summary_data['dimensions'] > 0:
        print(f"  Dimensions: {summary_data['dimensions']}")
    if summary_data['skipped_records'] > 0:
        print(f"  Skipped Records: {summary_data['skipped_records']}")


def list_transactions(sie_data: sie_parser.SieData, csv_output: bool = False) -> None:
    """List all verifications with their entry summaries."""

    transaction_data = []
    for transaction in sie_data.transactions:
        balance = sum(entry.amount for entry in transaction.entries)
        transaction_data.append({
            'verification': transaction.verification_number,
            'date': transaction.date,
            'description': transaction.text,
            'entries': len(transaction.entries),
            'total_amount': sum(abs(entry.amount) for entry in transaction.entries),
            'balance': balance,
            'balanced': 'Yes' if abs(balance) < 0.01 else 'No',
        })

    if csv_output:
        writer = csv.DictWriter(sys.stdout, fieldnames=['verification', 'date', 'description', 'entries', 'total_amount', 'balance', 'balanced'])
        writer.writeheader()
        writer.writerows(transaction_data)
    else:
        print(f"{'Ver':<10} {'Date':<10} {'Description':<25} {'Rows':<6} {'Amount':<12} {'Balance':<12} {'Bal?':<5}")
        print("-" * 85)
        for transaction in transaction_data:
            print(f"{transaction['verification']:<10} {transaction['date']:<10} {transaction['description']:<25} "
                  f"{transaction['entries']:>6} {transaction['total_amount']:>12.2f} "
                  f"{transaction['balance']:>12.2f} {transaction['balanced']:<5}")

        print(f"\nTotal transactions: {len(transaction_data)}")


def list_periods(sie_data: sie_parser.SieData, year_index: int = 0, csv_output: bool = False) -> None:
    """List aggregated BAS totals per period."""

    periods = sie_aggregator.aggregate_financials(sie_data, year_index)
    columns = ['revenue', 'cost_of_goods_sold', 'operating_expenses', 'assets', 'liabilities', 'equity']
    period_data = [{'period': key, **totals.as_dict()} for key, totals in sorted(periods.items())]

    if csv_output:
        writer = csv.DictWriter(sys.stdout, fieldnames=['period'] + columns)
        writer.writeheader()
        writer.writerows(period_data)
    else:
        print(f"{'Period':<8} {'Revenue':>14} {'COGS':>14} {'Opex':>14} {'Assets':>14} {'Liabilities':>14} {'Equity':>14}")
        print("-" * 98)
        for period in period_data:
            print(f"{period['period']:<8} " + " ".join(f"{period[c]:>14.2f}" for c in columns))

        print(f"\nTotal periods: {len(period_data)}")


def build_store(config: sie_config.Config) -> sie_import.FinancialStore:
    if config.store.backend == "memory":
        return sie_import.InMemoryFinancialStore()
    return sie_import.JsonlFinancialStore(config.store.path)


def run_import(file_path: str, config: sie_config.Config, year_index: int,
               tenant_id: str, imported_by: str, encoding: str, strict: bool) -> bool:
    """Import a SIE file into the configured store and print the result."""

    store = build_store(config)
    sie_data, result = asyncio.run(sie_import.import_sie4_file(
        file_path,
        tenant_id=tenant_id,
        imported_by=imported_by,
        store=store,
        year_index=year_index,
        encoding=encoding,
        strict=strict,
    ))

    print(f"Company: {result.company.name} ({result.company.organization_number})")
    print(f"Format: {sie_data.format}  Program: {sie_data.program}")
    print(f"Periods imported: {result.periods_imported}")
    for error in result.errors:
        print(f"  Error: {error}")
    print("Import succeeded" if result.success else "Import finished with errors")
    return result.success


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="sie4",
        description="SIE file analyzer - List accounts, verifications and BAS periods from Swedish SIE files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s summary file.se                     # Show file summary
  %(prog)s accounts file.se --non-zero         # List accounts with balances
  %(prog)s transactions file.se --csv          # Output verifications as CSV
  %(prog)s periods file.se --year -1           # Aggregate the previous year
  %(prog)s import file.se --config sie4.yaml   # Import periods into the store
        """
    )

    parser.add_argument('command', choices=['accounts', 'transactions', 'summary', 'periods', 'import'],
                        help='Command to execute')
    parser.add_argument('file', help='SIE file to analyze')
    parser.add_argument('--csv', action='store_true',
                        help='Output in CSV format')
    parser.add_argument('--non-zero', action='store_true',
                        help='For accounts: only show accounts with non-zero balances')
    parser.add_argument('--config', default=None,
                        help='Path to YAML configuration file')
    parser.add_argument('--encoding', default=None,
                        help='File encoding (default: iso-8859-1, or the configured one)')
    parser.add_argument('--year', type=int, default=None,
                        help='Fiscal year index (0 = current, -1 = previous)')
    parser.add_argument('--strict', action='store_true',
                        help='Fail on the first unreadable number instead of skipping the record')
    parser.add_argument('--tenant', default=None,
                        help='For import: tenant id (default from configuration)')
    parser.add_argument('--user', default=None,
                        help='For import: user recorded as importer (default from configuration)')
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='Logging level (default: WARNING)')

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = sie_config.load_config(args.config) if args.config else sie_config.default_config()

        encoding = args.encoding or config.parser.encoding
        if not sie_config.is_single_byte_encoding(encoding):
            raise sie_config.ConfigError(f"Encoding must be a single-byte code page: {encoding}")
        strict = config.parser.strict or args.strict
        year_index = args.year if args.year is not None else config.aggregation.fiscal_year

        if args.command == 'import':
            success = run_import(
                args.file,
                config,
                year_index=year_index,
                tenant_id=args.tenant or config.import_.tenant_id,
                imported_by=args.user or config.import_.imported_by,
                encoding=encoding,
                strict=strict,
            )
            if not success:
                sys.exit(1)
            return

        sie_data = sie_parser.parse_sie4_file(args.file, encoding=encoding, strict=strict)

        if args.command == 'accounts':
            list_accounts(sie_data, year_index=year_index, non_zero_only=args.non_zero, csv_output=args.csv)
        elif args.command == 'transactions':
            list_transactions(sie_data, csv_output=args.csv)
        elif args.command == 'summary':
            show_summary(sie_data, csv_output=args.csv)
        elif args.command == 'periods':
            list_periods(sie_data, year_index=year_index, csv_output=args.csv)

    except FileNotFoundError:
        print(f"Error: File '{args.file}' not found", file=sys.stderr)
        sys.exit(1)
    except sie_config.ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except sie_parser.SieParseError as e:
        print(f"Error parsing SIE file: {e}", file=sys.stderr)
        sys.exit(1)
    except sie_import.SieImportError as e:
        print(f"Error importing SIE file: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error")
        print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
