import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.tokenizer import (
    CsvTokenizer,
    SkippedRow,
    TokenizedRow,
    broken_ratio,
    decode_csv_bytes,
    tokenize,
)


def _cells(source, **kwargs):
    return [row.cells for row in CsvTokenizer(source, **kwargs).rows()]


def test_quoted_delimiter_does_not_split_cell():
    rows = _cells('No,고객사,매출금액\n1,"현대, 울산","2,482,192"\n2,기아,500\n')

    assert rows == [
        ("No", "고객사", "매출금액"),
        ("1", "현대, 울산", "2,482,192"),
        ("2", "기아", "500"),
    ]


def test_row_and_cell_counts_match_reference():
    text = 'a,b,c\n"x,1","y""q""",z\n\n  p ,"",r\n'
    rows = _cells(text)

    assert len(rows) == 3
    assert [len(r) for r in rows] == [3, 3, 3]
    assert rows[1] == ("x,1", 'y"q"', "z")
    assert rows[2] == ("p", "", "r")


def test_quoted_cell_spanning_lines():
    text = '"No","Project\nType","Customer"\n1,New,HMC\n'
    rows = _cells(text)

    assert rows[0] == ("No", "Project\nType", "Customer")
    assert rows[1] == ("1", "New", "HMC")


def test_byte_order_mark_is_stripped():
    text = chr(0xFEFF) + "코드,수량\nA,1\n"
    rows = _cells(text)
    assert rows[0][0] == "코드"

    raw = text.encode("utf-8")
    assert _cells(raw)[0][0] == "코드"


def test_tokenizer_is_restartable():
    tokenizer = CsvTokenizer("a,b\n1,2\n3,4\n")
    first = list(tokenizer)
    second = list(tokenizer)

    assert first == second
    assert len(first) == 3


def test_short_rows_are_skipped_with_reason_header_exempt():
    outcomes = tokenize("h1,h2\n1,2,3\n4\n5,6,7\n", min_cells=3)

    assert isinstance(outcomes[0], TokenizedRow)
    assert isinstance(outcomes[1], TokenizedRow)
    assert isinstance(outcomes[2], SkippedRow)
    assert outcomes[2].reason == "short_row"
    assert outcomes[2].line_no == 3
    assert isinstance(outcomes[3], TokenizedRow)


def test_cp949_bytes_are_redecoded():
    raw = "품목코드,품목명,재고\nA-1,볼트,10\n".encode("cp949")

    decoded = decode_csv_bytes(raw)

    assert decoded.encoding == "cp949"
    assert decoded.text.startswith("품목코드")
    tokenizer = CsvTokenizer(raw)
    assert tokenizer.encoding == "cp949"
    assert tokenizer.rows()[1].cells == ("A-1", "볼트", "10")


def test_utf8_bytes_stay_utf8():
    decoded = decode_csv_bytes("재질코드,재질명\nM1,SUS304\n".encode("utf-8"))
    assert decoded.encoding == "utf-8"
    assert decoded.broken_ratio == 0.0


def test_broken_ratio_counts_mojibake():
    assert broken_ratio("") == 0.0
    assert broken_ratio("plain text") == 0.0
    assert broken_ratio("Ã©Ã©") > 0.01
