"""Tests for SIE parser.

This test suite covers decoding, tokenizing and record parsing, and checks the
parser against a complete sample file.
"""

import pytest
import sys
import os

# Add the parent directory to the path so we can import sie_parser
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import sie_parser


TEST_FILE = os.path.join(os.path.dirname(__file__), 'test_sie4.se')


def test_decode_maps_every_byte():
    """Test that every single byte decodes to exactly one character."""
    data = bytes(range(256))
    text = sie_parser.decode_sie(data)

    assert len(text) == 256
    assert sie_parser.decode_sie("Försäljning".encode("iso-8859-1")) == "Försäljning"


def test_decode_with_pc8_encoding():
    """Test decoding with the PC8 code page named by #FORMAT PC8."""
    assert sie_parser.decode_sie("Försäljning".encode("cp437"), encoding="cp437") == "Försäljning"


def test_tokenize_keeps_quoted_spans():
    """Test that quoted fields stay whole and keep their quotes."""
    assert sie_parser.tokenize_line('#FNAMN "Test Company AB"') == ['#FNAMN', '"Test Company AB"']
    assert sie_parser.tokenize_line('#KONTO 1910 Kassa') == ['#KONTO', '1910', 'Kassa']
    assert sie_parser.tokenize_line('#TRANS 1910 {} 1000.00') == ['#TRANS', '1910', '{}', '1000.00']


@pytest.mark.parametrize("text", ["", "a", "two words", "  leading and trailing  ", "many   spaces here", "Försäljning 25%"])
def test_tokenize_quoting_property(text):
    """Test that a quoted field is one token, quotes included, whatever spaces it holds."""
    tokens = sie_parser.tokenize_line(f'#TAG "{text}"')

    assert tokens == ['#TAG', f'"{text}"']


def test_tokenize_collapses_repeated_spaces_and_empty_line():
    """Test that runs of spaces separate fields and an empty line has no fields."""
    assert sie_parser.tokenize_line('#RAR   0  20240101 20241231') == ['#RAR', '0', '20240101', '20241231']
    assert sie_parser.tokenize_line('') == []


def test_unquote():
    """Test that only a surrounding pair of quotes is removed."""
    assert sie_parser.unquote('"Kassa"') == 'Kassa'
    assert sie_parser.unquote('Kassa') == 'Kassa'
    assert sie_parser.unquote('""') == ''
    assert sie_parser.unquote('"') == '"'


def test_record_tag_lookup_is_case_insensitive():
    """Test tag lookup ignores case and returns None for unsupported tags."""
    assert sie_parser.RecordTag.from_token('#konto') is sie_parser.RecordTag.KONTO
    assert sie_parser.RecordTag.from_token('#PSALDO') is sie_parser.RecordTag.PSALDO
    assert sie_parser.RecordTag.from_token('#KTYP') is None


def test_parse_simple_sie():
    """Test basic SIE parsing functionality with minimal valid file."""
    sie_content = '''#FLAGGA 0
#SIETYP 4
#PROGRAM "Fortnox" "3.0"
#GEN 20260201
#FNAMN "Test Company AB"
#ORGNR 555555-5555
#ADRESS "Kontakt Person" "Gatan 1"
#SNI 62010
#RAR 0 20260101 20261231
#KONTO 1910 "Kassa"
#VER A 1 20260101 "Test transaction"
{
   #TRANS 1910 {} 1000.00
}
'''
    result = sie_parser.parse_sie4(sie_content)

    assert result.format == "SIE4"
    assert result.program == "Fortnox"
    assert result.program_version == "3.0"
    assert result.generated_date == "20260201"
    assert result.company == sie_parser.CompanyInfo(
        name="Test Company AB",
        organization_number="555555-5555",
        address="Kontakt Person",
        sni_code="62010",
    )
    assert result.fiscal_years == (sie_parser.FiscalYear(0, "20260101", "20261231"),)
    assert result.accounts == {1910: "Kassa"}
    assert len(result.transactions) == 1
    assert result.transactions[0].entries[0].amount == 1000.0


def test_empty_file():
    """Test that empty files are handled gracefully without errors."""
    result = sie_parser.parse_sie4("")

    assert result.company.name == ""
    assert result.company.address is None
    assert len(result.accounts) == 0
    assert len(result.transactions) == 0
    assert result.format == ""


def test_comments_blank_lines_and_unknown_tags_are_ignored():
    """Test forward compatibility: unknown tags and comments do not change the result."""
    sie_content = '''// exported by test
#KTYP 1910 T

#OBJEKT 1 "10" "Sales"
#BKOD 62010
#KONTO 1910 "Kassa"
free text that is not a record
'''
    result = sie_parser.parse_sie4(sie_content)

    assert result.accounts == {1910: "Kassa"}
    assert result.issues == ()


def test_lowercase_tags_are_recognized():
    """Test that tags are compared case-insensitively."""
    result = sie_parser.parse_sie4('#konto 3010 "Försäljning"\n#fnamn "Bolaget AB"\n')

    assert result.accounts == {3010: "Försäljning"}
    assert result.company.name == "Bolaget AB"


def test_crlf_line_endings_and_bom():
    """Test Windows line endings and a leading byte order mark."""
    result = sie_parser.parse_sie4('\ufeff#FNAMN "Bolaget AB"\r\n#KONTO 1910 "Kassa"\r\n')

    assert result.company.name == "Bolaget AB"
    assert result.accounts == {1910: "Kassa"}


def test_last_occurrence_wins():
    """Test last-write-wins for accounts, dimensions and company fields."""
    sie_content = '''#FNAMN "Old AB"
#FNAMN "New AB"
#KONTO 1910 "Kassa"
#KONTO 1910 "Kontanter"
#DIM 1 "Avdelning"
#DIM 1 "Kostnadsställe"
'''
    result = sie_parser.parse_sie4(sie_content)

    assert result.company.name == "New AB"
    assert result.accounts == {1910: "Kontanter"}
    assert result.dimensions == {1: "Kostnadsställe"}


def test_short_records_are_ignored():
    """Test that records with too few fields leave the result untouched."""
    sie_content = '''#RAR 0 20240101
#KONTO 1910
#IB 0 1910
#UB 0
#PSALDO 0 1 3010
#DIM 1
#FNAMN
'''
    result = sie_parser.parse_sie4(sie_content)

    assert result.fiscal_years == ()
    assert len(result.accounts) == 0
    assert result.opening_balances == ()
    assert result.closing_balances == ()
    assert result.period_balances == ()
    assert len(result.dimensions) == 0
    assert result.company.name == ""


def test_balances_resolve_account_names():
    """Test that balances carry the account name known when they are parsed."""
    sie_content = '''#IB 0 1910 500.00
#KONTO 1910 "Kassa"
#IB 0 1910 1500.00
#UB 0 1910 2500,50
'''
    result = sie_parser.parse_sie4(sie_content)

    assert result.opening_balances == (
        sie_parser.AccountBalance(0, 1910, "", 500.0),
        sie_parser.AccountBalance(0, 1910, "Kassa", 1500.0),
    )
    assert result.closing_balances == (sie_parser.AccountBalance(0, 1910, "Kassa", 2500.5),)


def test_period_balance_shapes():
    """Test #PSALDO with no, empty, single and multi-token dimension objects."""
    sie_content = '''#PSALDO 0 1 3010 {} -50000
#PSALDO 0 2 3010 -4000
#PSALDO 0 3 5010 {1 "10"} 2000.00
#PSALDO 0 4 5010 {1 "10" 6 "P1"} 300.00 12
#PSALDO 0 5 5010 {"1" "10"} 75.25
#PSALDO 0 202406 1930 {} 100
#PSALDO 0 7 1930 {}
'''
    result = sie_parser.parse_sie4(sie_content)
    balances = [(pb.month, pb.account_number, pb.balance) for pb in result.period_balances]

    assert balances == [
        (1, 3010, -50000.0),
        (2, 3010, -4000.0),
        (3, 5010, 2000.0),
        (4, 5010, 300.0),
        (5, 5010, 75.25),
        (6, 1930, 100.0),
        (7, 1930, 0.0),
    ]


def test_scenario_single_verification():
    """Test a quoted series and number form the verification id."""
    sie_content = '''#VER "A" "1" 20260115 "Test"
{
#TRANS 1910 {} 1000
}
'''
    result = sie_parser.parse_sie4(sie_content)

    assert len(result.transactions) == 1
    transaction = result.transactions[0]
    assert transaction.verification_number == "A1"
    assert transaction.date == "20260115"
    assert transaction.text == "Test"
    assert transaction.entries == (sie_parser.Entry(account_number=1910, amount=1000.0),)


def test_unterminated_verification_is_dropped():
    """Test that a verification still open at end of input is not kept."""
    sie_content = '''#VER A 1 20260115 "Open"
{
#TRANS 1910 {} 1000
'''
    result = sie_parser.parse_sie4(sie_content)

    assert result.transactions == ()


def test_trans_outside_block_is_discarded():
    """Test that #TRANS rows only count inside a verification block."""
    sie_content = '''#TRANS 1910 {} 1000
#VER A 1 20260115 "Test"
{
#TRANS 1910 {} 1000
}
#TRANS 1930 {} 500
'''
    result = sie_parser.parse_sie4(sie_content)

    assert len(result.transactions) == 1
    assert [e.account_number for e in result.transactions[0].entries] == [1910]


def test_trans_fields():
    """Test amount, date and memo positions in #TRANS rows."""
    sie_content = '''#VER A 567 20081216 "Kontant lön"
{
#TRANS 7010 {"1" "456" "7" "47"} 13200.00
#TRANS 1910 {} -13200.00 20081216 "Lön december"
#TRANS 2710 {} -100.00 "Skatt"
#TRANS 1930 250.00
#TRANS 1940 {}
}
'''
    result = sie_parser.parse_sie4(sie_content)
    entries = result.transactions[0].entries

    assert entries == (
        sie_parser.Entry(7010, 13200.0),
        sie_parser.Entry(1910, -13200.0, text="Lön december", date="20081216"),
        sie_parser.Entry(2710, -100.0, text="Skatt"),
        sie_parser.Entry(1930, 250.0),
    )


def test_trans_date_memo_and_split_object_list():
    """Test that a date after the amount is not taken as the memo, and split object lists are skipped."""
    sie_content = '''#VER A 1 20260115 "Test"
{
#TRANS 1910 {} 1000 20260115 "memo"
#TRANS 3010 {1 "10"} -1000
}
'''
    entries = sie_parser.parse_sie4(sie_content).transactions[0].entries

    assert entries[0].text == "memo"
    assert entries[0].date == "20260115"
    assert entries[1] == sie_parser.Entry(3010, -1000.0)


def test_consecutive_verifications():
    """Test that each block gets its own entries."""
    sie_content = '''#VER A 1 20240101 "First"
{
#TRANS 1910 {} 100
#TRANS 3010 {} -100
}
#VER A 2 20240102 "Second"
{
#TRANS 1910 {} 200
}
'''
    result = sie_parser.parse_sie4(sie_content)

    assert [t.verification_number for t in result.transactions] == ["A1", "A2"]
    assert [len(t.entries) for t in result.transactions] == [2, 1]


def test_parse_error():
    """Test that an unreadable number raises a distinct error with the line number."""
    sie_content = '''#FLAGGA 1
#IB 0 1910 invalid_amount
'''
    with pytest.raises(sie_parser.SieNumberError) as exc_info:
        sie_parser.parse_sie4(sie_content, strict=True)

    assert "Line 2" in str(exc_info.value)
    assert exc_info.value.line_number == 2
    assert exc_info.value.field_name == "balance"
    assert exc_info.value.value == "invalid_amount"
    assert isinstance(exc_info.value, sie_parser.SieParseError)


@pytest.mark.parametrize("line", [
    "#KONTO abc \"Kassa\"",
    "#RAR x 20240101 20241231",
    "#PSALDO 0 jan 3010 {} 100",
    "#PSALDO 0 1 3010 {} nan",
    "#UB 0 1910 inf",
    "#DIM one \"Projekt\"",
])
def test_unparseable_numeric_fields(line):
    """Test that malformed numbers never turn into NaN silently."""
    with pytest.raises(sie_parser.SieNumberError):
        sie_parser.parse_sie4(line, strict=True)


def test_lenient_parse_records_issues():
    """Test that a lenient parse skips bad records and reports them."""
    sie_content = '''#KONTO 1910 "Kassa"
#UB 0 1910 1O00
#UB 0 1930 500
'''
    result = sie_parser.parse_sie4(sie_content, strict=False)

    assert result.closing_balances == (sie_parser.AccountBalance(0, 1930, "", 500.0),)
    assert len(result.issues) == 1
    assert result.issues[0].line_number == 2
    assert "balance" in result.issues[0].message


def test_default_parse_always_returns_result():
    """Test that a malformed record does not abort a parse with default settings."""
    sie_content = '''#FNAMN "Bolaget AB"
#KONTO 19l0 "Kassa"
#KONTO 1930 "Bank"
'''
    result = sie_parser.parse_sie4(sie_content)

    assert result.company.name == "Bolaget AB"
    assert result.accounts == {1930: "Bank"}
    assert result.issues == (
        sie_parser.SieIssue(2, '#KONTO 19l0 "Kassa"', "Invalid account number: '19l0'"),
    )


def test_default_file_parse_reports_issues(tmp_path):
    """Test that the file entry point skips bad records by default."""
    path = tmp_path / "broken.se"
    path.write_bytes(b'#FNAMN "Bolaget AB"\n#UB 0 1910 abc\n#UB 0 1930 500\n')

    result = sie_parser.parse_sie4_file(path)

    assert result.closing_balances == (sie_parser.AccountBalance(0, 1930, "", 500.0),)
    assert [issue.line_number for issue in result.issues] == [2]


@pytest.mark.parametrize("period,month", [("1", 1), ("12", 12), ("202401", 1), ("202412", 12), ('"202406"', 6)])
def test_period_month_numbers(period, month):
    """Test bare and YYYYMM #PSALDO periods."""
    result = sie_parser.parse_sie4(f'#PSALDO 0 {period} 3010 {{}} -100\n', strict=True)

    assert result.period_balances[0].month == month


@pytest.mark.parametrize("period", ["0", "13", "202413", "202400", "-1"])
def test_period_month_out_of_range(period):
    """Test that a month outside 1-12 is rejected instead of producing a bad period key."""
    with pytest.raises(sie_parser.SieNumberError) as exc_info:
        sie_parser.parse_sie4(f'#PSALDO 0 {period} 3010 {{}} -100\n', strict=True)

    assert exc_info.value.field_name == "month"

    result = sie_parser.parse_sie4(f'#PSALDO 0 {period} 3010 {{}} -100\n')
    assert result.period_balances == ()
    assert len(result.issues) == 1


def test_result_is_immutable():
    """Test that the returned result cannot be modified."""
    result = sie_parser.parse_sie4('#KONTO 1910 "Kassa"\n')

    with pytest.raises(AttributeError):
        result.format = "SIE1"
    with pytest.raises(TypeError):
        result.accounts[1930] = "Bank"


def test_parse_is_deterministic():
    """Test that parsing the same content twice gives equal results."""
    with open(TEST_FILE, 'rb') as f:
        content = sie_parser.decode_sie(f.read())

    assert sie_parser.parse_sie4(content) == sie_parser.parse_sie4(content)


def test_parse_bytes():
    """Test the byte entry point decodes before parsing."""
    data = '#FNAMN "Åkeri AB"\n#KONTO 3010 "Försäljning"\n'.encode("iso-8859-1")
    result = sie_parser.parse_sie4_bytes(data)

    assert result.company.name == "Åkeri AB"
    assert result.accounts[3010] == "Försäljning"


def test_comprehensive_file_parsing():
    """Test parsing a complete SIE file with all supported records."""
    result = sie_parser.parse_sie4_file(TEST_FILE)

    # Company information
    assert result.company.name == "Testforetaget AB"
    assert result.company.organization_number == "556677-8899"
    assert result.company.address == "Anna Andersson"
    assert result.company.sni_code == "62010"

    # File metadata
    assert result.format == "SIE4"
    assert result.program == "Test SIE4 Generator"
    assert result.program_version == "2.1"
    assert result.generated_date == "20250115"

    # Fiscal years in file order
    assert [fy.year_index for fy in result.fiscal_years] == [0, -1]
    assert result.fiscal_year(-1).start_date == "20230101"
    assert result.fiscal_year(5) is None

    # Chart of accounts and dimensions
    assert len(result.accounts) == 11
    assert result.account_name(2440) == "Leverantorsskulder"
    assert result.account_name(9999) == ""
    assert result.dimensions == {1: "Kostnadsstalle", 6: "Projekt"}

    # Balances
    assert len(result.opening_balances) == 3
    assert len(result.closing_balances) == 9
    assert result.opening_balances[0] == sie_parser.AccountBalance(-1, 1930, "Foretagskonto", 40000.0)
    assert len(result.period_balances) == 8
    assert result.period_balances[2] == sie_parser.PeriodBalance(0, 1, 5010, 2000.0)

    # Verifications
    assert [t.verification_number for t in result.transactions] == ["A1", "A2", "B1"]
    a1 = result.transactions[0]
    assert a1.text == "Kontantforsaljning"
    assert len(a1.entries) == 3
    assert sum(e.amount for e in a1.entries) == 0.0
    rent = result.transactions[1].entries[0]
    assert rent == sie_parser.Entry(5010, 2000.0, text="Lokalhyra jan", date="20240110")


def test_parse_file_not_found():
    """Test that a missing file raises FileNotFoundError."""
    with pytest.raises(FileNotFoundError):
        sie_parser.parse_sie4_file(os.path.join(os.path.dirname(__file__), 'missing.se'))


def test_parse_file_with_pc8_encoding(tmp_path):
    """Test reading a PC8 (CP437) encoded file."""
    path = tmp_path / "pc8.se"
    path.write_bytes('#FORMAT PC8\n#FNAMN "Övningsbolaget AB"\n'.encode("cp437"))

    result = sie_parser.parse_sie4_file(path, encoding="cp437")

    assert result.company.name == "Övningsbolaget AB"


if __name__ == "__main__":
    pytest.main([__file__])
