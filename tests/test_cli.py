"""
Tests for the command line import/export
"""

from unittest.mock import patch

import pytest

from stocktracker.cli import main

from tests.conftest import FakeResolver

CSV = (
    "Trade Date,Ticker,Quantity,Cost\n"
    "2024-01-02,AAPL,10,150\n"
    "2024-01-05,MSFT,2,400\n"
)


@pytest.fixture(autouse=True)
def fake_market_data():
    with patch("stocktracker.cli.YahooTickerResolver", FakeResolver):
        yield


def write_csv(tmp_path, content=CSV):
    path = tmp_path / "trades.csv"
    path.write_text(content, encoding="utf-8")
    return path


def test_import_then_export(tmp_path, capsys):
    path = write_csv(tmp_path)
    assert main(["import", str(path), "--owner", "cli-user", "--map", "Cost=pricePerShare", "--yes"]) == 0
    assert "Imported 2 transactions, skipped 0" in capsys.readouterr().out

    output = tmp_path / "export.csv"
    assert main(["export", "--owner", "cli-user", "--output", str(output)]) == 0
    lines = output.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "Date,Symbol,Type,Quantity,Price,Fee,Total,Notes"
    assert [line.split(",")[1] for line in lines[1:]] == ["MSFT", "AAPL"]


def test_import_requires_all_mappings(tmp_path, capsys):
    path = write_csv(tmp_path)
    assert main(["import", str(path), "--owner", "cli-user", "--yes"]) == 2
    assert "pricePerShare" in capsys.readouterr().err


def test_import_rejects_malformed_file(tmp_path, capsys):
    path = write_csv(tmp_path, "Ticker,Quantity\n")
    assert main(["import", str(path), "--owner", "cli-user", "--yes"]) == 1
    assert "Upload failed" in capsys.readouterr().err


def test_import_with_no_valid_rows(tmp_path, capsys):
    path = write_csv(tmp_path, "Trade Date,Ticker,Quantity,Price\n2024-01-02,NOPE,1,10\n")
    assert main(["import", str(path), "--owner", "cli-user", "--yes"]) == 1

    out = capsys.readouterr()
    assert "Ticker symbol 'NOPE' not found" in out.out
    assert "Nothing to import" in out.err


def test_export_to_stdout(capsys):
    assert main(["export", "--owner", "nobody"]) == 0
    assert capsys.readouterr().out.startswith("Date,Symbol,Type")
