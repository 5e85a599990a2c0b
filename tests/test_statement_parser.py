import pytest

from payment_recon.config import ReconConfig
from payment_recon.parsers.statement_parser import StatementParser
from payment_recon.utils.exceptions import StatementParseError


@pytest.fixture
def parser() -> StatementParser:
    return StatementParser(ReconConfig())


def test_amount_column(parser):
    extract = parser.parse_text(
        "Date,Description,Reference,Amount,Balance\n"
        "01/03/2024,FASTER PAYMENT JSMITH25,JSMITH25,25.00,1024.50\n"
        "02/03/2024,CARD PAYMENT,,-12.00,1012.50\n"
    )

    assert extract.errors == []
    first, second = extract.rows
    assert first["transaction_date"] == "01/03/2024"
    assert first["description"] == "FASTER PAYMENT JSMITH25"
    assert first["reference"] == "JSMITH25"
    assert first["amount"] == "25.00"
    assert first["balance"] == "1024.50"
    assert first["line_number"] == 2
    assert first["raw_data"]["description"] == "FASTER PAYMENT JSMITH25"
    assert second["reference"] is None
    assert second["line_number"] == 3


def test_credit_and_debit_columns(parser):
    extract = parser.parse_text(
        "Transaction Date,Narrative,Money In,Money Out\n"
        "2024-03-01,BGC DOE-MEMBER-7,30.00,\n"
        "2024-03-02,DIRECT DEBIT GYM,,15.50\n"
    )

    assert [r["amount"] for r in extract.rows] == ["30.00", "-15.50"]
    assert extract.rows[0]["reference"] is None


def test_headers_are_case_and_space_insensitive(parser):
    extract = parser.parse_text("  DATE , DESCRIPTION , AMOUNT \n2024-03-01,X,1.00\n")
    assert extract.rows[0]["amount"] == "1.00"


def test_bad_debit_value_is_reported_per_row(parser):
    extract = parser.parse_text(
        "Date,Description,Credit,Debit\n"
        "2024-03-01,FIRST,,abc\n"
        "2024-03-02,SECOND,10.00,\n"
        "2024-03-03,THIRD,,\n"
    )

    assert [r["description"] for r in extract.rows] == ["SECOND"]
    assert [(e.row_number, e.field) for e in extract.errors] == [(2, "amount"), (4, "amount")]


def test_blank_rows_are_skipped(parser):
    extract = parser.parse_text("Date,Description,Amount\n2024-03-01,X,1.00\n,,\n2024-03-02,Y,2.00\n")

    assert [r["description"] for r in extract.rows] == ["X", "Y"]
    assert [r["line_number"] for r in extract.rows] == [2, 4]


@pytest.mark.parametrize(
    "header",
    ["Description,Amount", "Date,Amount", "Date,Description,Reference"],
)
def test_missing_required_columns(parser, header):
    with pytest.raises(StatementParseError):
        parser.parse_text(f"{header}\n")


def test_empty_statement(parser):
    with pytest.raises(StatementParseError):
        parser.parse_text("   ")


def test_parse_file(parser, tmp_path):
    path = tmp_path / "march.csv"
    path.write_text("Date,Description,Amount\n01/03/2024,BANK CREDIT THX,12.50\n", encoding="utf-8")

    extract = parser.parse_file(path)

    assert len(extract.rows) == 1
    assert extract.columns == ["date", "description", "amount"]


def test_parse_missing_file(parser, tmp_path):
    with pytest.raises(StatementParseError):
        parser.parse_file(tmp_path / "missing.csv")


def test_custom_column_aliases():
    aliases = {"date": ["posted"], "description": ["text"], "amount": ["amt"]}
    config = ReconConfig(input={"statement": {"column_aliases": aliases}})
    extract = StatementParser(config).parse_text("Posted,Text,Amt\n2024-03-01,X,1.00\n")

    assert extract.rows[0]["transaction_date"] == "2024-03-01"
