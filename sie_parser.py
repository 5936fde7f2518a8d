"""
SIE Parser - Parse Swedish SIE 4 accounting exports into structured data.

SIE (Standard Import Export) is the line-oriented text format Swedish accounting
systems use to exchange data. Every record sits on its own line and starts with
a tag such as ``#KONTO`` or ``#PSALDO``. Fields are separated by spaces, string
fields may be wrapped in double quotes, and the rows of a verification are
nested between a ``{`` line and a ``}`` line directly after its ``#VER`` record.

Only the records needed to describe the company, its fiscal years, the chart of
accounts, balances and verifications are interpreted. Every other tag is
ignored so newer files keep parsing.

Example usage:
    from sie_parser import parse_sie4_file

    sie_data = parse_sie4_file('export.se')

    print(f"Company: {sie_data.company.name}")
    print(f"Accounts: {len(sie_data.accounts)}")
    print(f"Verifications: {len(sie_data.transactions)}")
"""

__version__ = "0.2.0"

import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from os import PathLike
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "iso-8859-1"

_LINE_SPLIT = re.compile(r"\r?\n")
_DATE_TOKEN = re.compile(r"^\d{8}$")


# Enums
class RecordTag(Enum):
    """Record kinds the parser understands, keyed by their SIE tag."""
    SIETYP = "#SIETYP"
    PROGRAM = "#PROGRAM"
    GEN = "#GEN"
    FNAMN = "#FNAMN"
    ORGNR = "#ORGNR"
    ADRESS = "#ADRESS"
    SNI = "#SNI"
    RAR = "#RAR"
    KONTO = "#KONTO"
    IB = "#IB"
    UB = "#UB"
    PSALDO = "#PSALDO"
    VER = "#VER"
    TRANS = "#TRANS"
    DIM = "#DIM"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_token(cls, token: str) -> Optional['RecordTag']:
        """Look up a tag case-insensitively. Returns None for tags outside the supported set."""
        try:
            return cls(token.upper())
        except ValueError:
            return None


# Exceptions
class SieParseError(Exception):
    """Raised when there's an error parsing a SIE file."""

    def __init__(self, message: str, line_number: int = None, line_content: str = None):
        self.line_number = line_number
        self.line_content = line_content

        if line_number is not None:
            message = f"Line {line_number}: {message}"
            if line_content:
                message += f" ('{line_content.strip()}')"

        super().__init__(message)


class SieNumberError(SieParseError):
    """Raised when a field that must be numeric cannot be read as a number."""

    def __init__(self, message: str, line_number: int = None, line_content: str = None,
                 field_name: str = "", value: str = ""):
        self.field_name = field_name
        self.value = value
        super().__init__(message, line_number, line_content)


# Data Models
@dataclass(frozen=True)
class CompanyInfo:
    """Company identity from #FNAMN, #ORGNR, #ADRESS and #SNI."""
    name: str = ""
    organization_number: str = ""
    address: Optional[str] = None
    sni_code: Optional[str] = None  # Swedish industry classification


@dataclass(frozen=True)
class FiscalYear:
    """A fiscal year declared by #RAR."""
    year_index: int  # 0 = current year, -1 = previous year, etc.
    start_date: str
    end_date: str


@dataclass(frozen=True)
class AccountBalance:
    """Opening (#IB) or closing (#UB) balance for one account."""
    year_index: int
    account_number: int
    account_name: str
    balance: float


@dataclass(frozen=True)
class PeriodBalance:
    """Monthly balance (#PSALDO) for one account."""
    year_index: int
    month: int
    account_number: int
    balance: float


@dataclass(frozen=True)
class Entry:
    """One #TRANS row of a verification."""
    account_number: int
    amount: float
    text: Optional[str] = None
    date: Optional[str] = None


@dataclass(frozen=True)
class Transaction:
    """A verification (#VER) with its entries."""
    verification_number: str
    date: str
    text: str
    entries: Tuple[Entry, ...] = ()


@dataclass(frozen=True)
class SieIssue:
    """A record skipped by a non-strict parse."""
    line_number: int
    line_content: str
    message: str


@dataclass(frozen=True)
class SieData:
    """Represents a parsed SIE file"""
    format: str = ""
    program: str = ""
    program_version: str = ""
    generated_date: str = ""
    company: CompanyInfo = field(default_factory=CompanyInfo)

    fiscal_years: Tuple[FiscalYear, ...] = ()
    accounts: Mapping[int, str] = field(default_factory=lambda: MappingProxyType({}))
    opening_balances: Tuple[AccountBalance, ...] = ()
    closing_balances: Tuple[AccountBalance, ...] = ()
    period_balances: Tuple[PeriodBalance, ...] = ()
    transactions: Tuple[Transaction, ...] = ()
    dimensions: Mapping[int, str] = field(default_factory=lambda: MappingProxyType({}))
    issues: Tuple[SieIssue, ...] = ()

    def fiscal_year(self, year_index: int = 0) -> Optional[FiscalYear]:
        """Return the first fiscal year declared with the given index."""
        return next((fy for fy in self.fiscal_years if fy.year_index == year_index), None)

    def account_name(self, account_number: int) -> str:
        return self.accounts.get(account_number, "")


# Utility Functions
def decode_sie(data: bytes, encoding: str = DEFAULT_ENCODING) -> str:
    """Decode raw SIE bytes using a single-byte code page.

    Every byte maps to exactly one character in ISO-8859-1 (and in CP437, the
    PC8 code page named by ``#FORMAT PC8``), so decoding never fails.
    """
    return bytes(data).decode(encoding)


def tokenize_line(line: str) -> List[str]:
    """Split a SIE line into fields, keeping quoted spans together.

    Quotes are kept on the returned field; use :func:`unquote` to get the
    literal text. There is no escape for a quote inside a quoted field.
    """
    tokens = []
    current = ""
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
            current += char
        elif char == ' ' and not in_quotes:
            if current:
                tokens.append(current)
                current = ""
        else:
            current += char

    if current:
        tokens.append(current)

    return tokens


def unquote(value: str) -> str:
    """Strip one pair of surrounding double quotes, if present."""
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def parse_int(value: str, field_name: str) -> int:
    """Read an integer field, raising SieNumberError when it is not one."""
    try:
        return int(unquote(value))
    except ValueError:
        raise SieNumberError(f"Invalid {field_name}: {value!r}", field_name=field_name, value=value) from None


def parse_amount(value: str, field_name: str = "amount") -> float:
    """Read a monetary field. Accepts a decimal comma; rejects nan and inf."""
    try:
        amount = float(unquote(value).replace(',', '.'))
    except ValueError:
        raise SieNumberError(f"Invalid {field_name}: {value!r}", field_name=field_name, value=value) from None
    if not math.isfinite(amount):
        raise SieNumberError(f"Invalid {field_name}: {value!r}", field_name=field_name, value=value)
    return amount


def _skip_object_list(tokens: List[str], index: int) -> int:
    """Return the index of the first token at or after ``index`` outside a dimension object list.

    An object list is ``{}`` or a brace group the tokenizer may have split over
    several tokens, e.g. ``{1`` ``"456"}`` or ``{"1" "456" "7" "47"}``.
    """
    while index < len(tokens) and tokens[index].startswith('{'):
        while index < len(tokens) and not tokens[index].endswith('}'):
            index += 1
        index += 1
    return index


def _month_number(value: str) -> int:
    """Read a #PSALDO period as a month number in 1-12.

    SIE 4 writes periods as YYYYMM; older exports use a bare month number.
    The year part is dropped, periods are keyed by the fiscal year's start year.
    """
    month = parse_int(value, "month")
    if len(unquote(value)) == 6:
        month %= 100
    if not 1 <= month <= 12:
        raise SieNumberError(f"Invalid month: {value!r}", field_name="month", value=value)
    return month


# Main Parser Functions
class SieParser:
    """Single-pass SIE record parser.

    Holds the mutable state of one parse: the collections being built, the
    verification currently open and whether the parser is inside a ``{ }``
    block. Use :func:`parse_sie4` rather than instantiating this directly.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict

        self.format = ""
        self.program = ""
        self.program_version = ""
        self.generated_date = ""
        self.company: Dict[str, Optional[str]] = {
            "name": "",
            "organization_number": "",
            "address": None,
            "sni_code": None,
        }
        self.fiscal_years: List[FiscalYear] = []
        self.accounts: Dict[int, str] = {}
        self.opening_balances: List[AccountBalance] = []
        self.closing_balances: List[AccountBalance] = []
        self.period_balances: List[PeriodBalance] = []
        self.transactions: List[Transaction] = []
        self.dimensions: Dict[int, str] = {}
        self.issues: List[SieIssue] = []

        self._current_transaction: Optional[dict] = None
        self._in_transaction = False

        self._handlers = {
            RecordTag.SIETYP: self._handle_sietyp,
            RecordTag.PROGRAM: self._handle_program,
            RecordTag.GEN: self._handle_gen,
            RecordTag.FNAMN: self._handle_fnamn,
            RecordTag.ORGNR: self._handle_orgnr,
            RecordTag.ADRESS: self._handle_adress,
            RecordTag.SNI: self._handle_sni,
            RecordTag.RAR: self._handle_rar,
            RecordTag.KONTO: self._handle_konto,
            RecordTag.IB: self._handle_ib,
            RecordTag.UB: self._handle_ub,
            RecordTag.PSALDO: self._handle_psaldo,
            RecordTag.VER: self._handle_ver,
            RecordTag.DIM: self._handle_dim,
        }

    def parse(self, content: str) -> SieData:
        if content.startswith('\ufeff'):  # Remove BOM if present
            content = content[1:]

        for line_num, raw_line in enumerate(_LINE_SPLIT.split(content), 1):
            line = raw_line.strip()
            if not line or line.startswith('//'):
                continue

            try:
                self._process_line(line)
            except SieNumberError as e:
                if self.strict:
                    raise SieNumberError(str(e), line_num, line, e.field_name, e.value) from e
                logger.warning(f"Skipping line {line_num}: {e}")
                self.issues.append(SieIssue(line_number=line_num, line_content=line, message=str(e)))

        if self._current_transaction is not None:
            logger.warning(
                f"Input ended inside verification {self._current_transaction['verification_number']};"
                " it was not closed and is dropped"
            )

        return self._freeze()

    def _process_line(self, line: str) -> None:
        # Verification block delimiters
        if line == '{':
            return
        if line == '}':
            if self._current_transaction is not None and self._in_transaction:
                self.transactions.append(self._close_transaction())
            self._current_transaction = None
            self._in_transaction = False
            return

        if not line.startswith('#'):
            return

        tokens = tokenize_line(line)
        tag = RecordTag.from_token(tokens[0])

        if tag is RecordTag.TRANS:
            if self._in_transaction:
                self._handle_trans(tokens)
            return

        handler = self._handlers.get(tag)
        if handler is None:
            logger.debug(f"Ignoring unsupported record {tokens[0]}")
            return
        handler(tokens)

    def _close_transaction(self) -> Transaction:
        current = self._current_transaction
        return Transaction(
            verification_number=current["verification_number"],
            date=current["date"],
            text=current["text"],
            entries=tuple(current["entries"]),
        )

    def _freeze(self) -> SieData:
        return SieData(
            format=self.format,
            program=self.program,
            program_version=self.program_version,
            generated_date=self.generated_date,
            company=CompanyInfo(**self.company),
            fiscal_years=tuple(self.fiscal_years),
            accounts=MappingProxyType(dict(self.accounts)),
            opening_balances=tuple(self.opening_balances),
            closing_balances=tuple(self.closing_balances),
            period_balances=tuple(self.period_balances),
            transactions=tuple(self.transactions),
            dimensions=MappingProxyType(dict(self.dimensions)),
            issues=tuple(self.issues),
        )

    # File metadata
    def _handle_sietyp(self, tokens: List[str]) -> None:
        if len(tokens) >= 2:
            self.format = f"SIE{tokens[1]}"

    def _handle_program(self, tokens: List[str]) -> None:
        if len(tokens) >= 2:
            self.program = unquote(tokens[1])
            self.program_version = unquote(tokens[2]) if len(tokens) >= 3 else ""

    def _handle_gen(self, tokens: List[str]) -> None:
        if len(tokens) >= 2:
            self.generated_date = tokens[1]

    # Company metadata
    def _handle_fnamn(self, tokens: List[str]) -> None:
        if len(tokens) >= 2:
            self.company["name"] = unquote(tokens[1])

    def _handle_orgnr(self, tokens: List[str]) -> None:
        if len(tokens) >= 2:
            self.company["organization_number"] = tokens[1]

    def _handle_adress(self, tokens: List[str]) -> None:
        if len(tokens) >= 2:
            self.company["address"] = unquote(tokens[1])

    def _handle_sni(self, tokens: List[str]) -> None:
        if len(tokens) >= 2:
            self.company["sni_code"] = tokens[1]

    # Chart of accounts and fiscal years
    def _handle_rar(self, tokens: List[str]) -> None:
        # Format: #RAR yearIndex startDate endDate
        if len(tokens) >= 4:
            self.fiscal_years.append(FiscalYear(
                year_index=parse_int(tokens[1], "fiscal year index"),
                start_date=tokens[2],
                end_date=tokens[3],
            ))

    def _handle_konto(self, tokens: List[str]) -> None:
        if len(tokens) >= 3:
            self.accounts[parse_int(tokens[1], "account number")] = unquote(tokens[2])

    def _handle_dim(self, tokens: List[str]) -> None:
        if len(tokens) >= 3:
            self.dimensions[parse_int(tokens[1], "dimension number")] = unquote(tokens[2])

    # Balances
    def _account_balance(self, tokens: List[str]) -> AccountBalance:
        # Format: #IB yearIndex accountNumber balance [quantity]
        account_number = parse_int(tokens[2], "account number")
        return AccountBalance(
            year_index=parse_int(tokens[1], "fiscal year index"),
            account_number=account_number,
            account_name=self.accounts.get(account_number, ""),
            balance=parse_amount(tokens[3], "balance"),
        )

    def _handle_ib(self, tokens: List[str]) -> None:
        if len(tokens) >= 4:
            self.opening_balances.append(self._account_balance(tokens))

    def _handle_ub(self, tokens: List[str]) -> None:
        if len(tokens) >= 4:
            self.closing_balances.append(self._account_balance(tokens))

    def _handle_psaldo(self, tokens: List[str]) -> None:
        # Format: #PSALDO yearIndex period accountNumber {objects} balance [quantity]
        if len(tokens) < 5:
            return
        balance_index = _skip_object_list(tokens, 4)
        balance = parse_amount(tokens[balance_index], "balance") if balance_index < len(tokens) else 0.0
        self.period_balances.append(PeriodBalance(
            year_index=parse_int(tokens[1], "fiscal year index"),
            month=_month_number(tokens[2]),
            account_number=parse_int(tokens[3], "account number"),
            balance=balance,
        ))

    # Verifications
    def _handle_ver(self, tokens: List[str]) -> None:
        # Format: #VER series verno verdate vertext [regdate] [sign]
        if self._current_transaction is not None:
            logger.warning(
                f"Verification {self._current_transaction['verification_number']} was never closed;"
                " replaced by the next #VER"
            )
        self._current_transaction = {
            "verification_number": unquote(tokens[1] if len(tokens) > 1 else "")
                                   + unquote(tokens[2] if len(tokens) > 2 else ""),
            "date": tokens[3] if len(tokens) > 3 else "",
            "text": unquote(tokens[4]) if len(tokens) > 4 else "",
            "entries": [],
        }
        self._in_transaction = True

    def _handle_trans(self, tokens: List[str]) -> None:
        # Format: #TRANS account {object list} amount [transdate] [transtext] [quantity] [sign]
        if self._current_transaction is None or len(tokens) < 3:
            return
        account_number = parse_int(tokens[1], "account number")
        amount_index = _skip_object_list(tokens, 2)
        if amount_index >= len(tokens):
            return

        rest = tokens[amount_index + 1:]
        date = None
        if rest and _DATE_TOKEN.match(rest[0]):
            date = rest.pop(0)
        text = unquote(rest[0]) if rest else None

        self._current_transaction["entries"].append(Entry(
            account_number=account_number,
            amount=parse_amount(tokens[amount_index]),
            text=text,
            date=date,
        ))


def parse_sie4(content: str, strict: bool = False) -> SieData:
    """
    Parse decoded SIE content and return structured data.

    Args:
        content: The full text of a SIE file
        strict: Raise on unreadable numeric fields instead of skipping the record

    Returns:
        SieData object containing parsed data

    Raises:
        SieNumberError: If strict and a numeric field cannot be read
    """
    result = SieParser(strict=strict).parse(content)
    logger.info(
        f"Parsed {result.format or 'SIE'} file: {len(result.accounts)} accounts,"
        f" {len(result.transactions)} verifications, {len(result.period_balances)} period balances"
        f" ({len(result.issues)} skipped)"
    )
    return result


def parse_sie4_bytes(data: bytes, encoding: str = DEFAULT_ENCODING, strict: bool = False) -> SieData:
    """Decode raw bytes (e.g. an uploaded file) and parse them."""
    return parse_sie4(decode_sie(data, encoding), strict=strict)


def parse_sie4_file(file_path: Union[str, PathLike], encoding: str = DEFAULT_ENCODING,
                    strict: bool = False) -> SieData:
    """
    Parse a SIE file from a file path.

    The file is read as bytes and decoded with a single-byte code page, so a
    file written in a different code page still parses; only non-ASCII
    characters may come out differently.

    Args:
        file_path: Path to the SIE file
        encoding: Single-byte code page (default: ISO-8859-1; use 'cp437' for PC8)
        strict: Raise on unreadable numeric fields instead of skipping the record

    Returns:
        SieData object containing parsed data

    Raises:
        SieParseError: If there's an error parsing the file
        FileNotFoundError: If the file doesn't exist
    """
    with open(file_path, 'rb') as f:
        return parse_sie4_bytes(f.read(), encoding=encoding, strict=strict)


# Public API
__all__ = [
    # Main parsing functions
    "parse_sie4",
    "parse_sie4_bytes",
    "parse_sie4_file",
    "SieParser",
    # Decoding and tokenizing
    "decode_sie",
    "tokenize_line",
    "unquote",
    "parse_int",
    "parse_amount",
    # Data models
    "SieData",
    "CompanyInfo",
    "FiscalYear",
    "AccountBalance",
    "PeriodBalance",
    "Entry",
    "Transaction",
    "SieIssue",
    # Enums
    "RecordTag",
    # Exceptions
    "SieParseError",
    "SieNumberError",
    # Constants
    "DEFAULT_ENCODING",
]
