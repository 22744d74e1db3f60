"""
CSV Tokenizer
Splits raw tabular exports into rows of trimmed cells and repairs encoding damage.

Exports arrive either as UTF-8 or as the regional Windows code page (CP949,
a superset of EUC-KR). Bytes are decoded as UTF-8 first; when more than 1%
of the result is replacement characters or mojibake pairs, the same bytes
are re-decoded as CP949 and whichever result looks cleaner is kept.
"""
from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Union

logger = logging.getLogger(__name__)

PRIMARY_ENCODING = "utf-8"
FALLBACK_ENCODING = "cp949"
BROKEN_RATIO_THRESHOLD = 0.01
BROKEN_TEXT_PATTERN = re.compile("\ufffd|Ã.|Â.")
BOM = "\ufeff"


@dataclass(frozen=True)
class DecodedText:
    text: str
    encoding: str
    broken_ratio: float


@dataclass(frozen=True)
class TokenizedRow:
    line_no: int
    cells: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.cells)


@dataclass(frozen=True)
class SkippedRow:
    """A row excluded from ingestion, with the reason it was dropped."""

    line_no: int
    reason: str
    detail: str = ""


RowOutcome = Union[TokenizedRow, SkippedRow]


def broken_ratio(text: str) -> float:
    if not text:
        return 0.0
    return len(BROKEN_TEXT_PATTERN.findall(text)) / len(text)


def strip_bom(text: str) -> str:
    return text[1:] if text.startswith(BOM) else text


def decode_csv_bytes(raw: bytes) -> DecodedText:
    """Decode an uploaded export, falling back to CP949 when UTF-8 looks corrupted."""
    primary = raw.decode(PRIMARY_ENCODING, errors="replace")
    primary_ratio = broken_ratio(primary)
    if primary and primary_ratio <= BROKEN_RATIO_THRESHOLD:
        return DecodedText(strip_bom(primary), PRIMARY_ENCODING, primary_ratio)

    fallback = raw.decode(FALLBACK_ENCODING, errors="replace")
    fallback_ratio = broken_ratio(fallback)
    if fallback and (not primary or fallback_ratio < primary_ratio):
        logger.info(
            "CSV decode: switched to %s (utf8_broken=%.4f fallback_broken=%.4f)",
            FALLBACK_ENCODING,
            primary_ratio,
            fallback_ratio,
        )
        return DecodedText(strip_bom(fallback), FALLBACK_ENCODING, fallback_ratio)

    logger.warning("CSV decode: %s output still looks corrupted (broken=%.4f)", PRIMARY_ENCODING, primary_ratio)
    return DecodedText(strip_bom(primary), PRIMARY_ENCODING, primary_ratio)


class CsvTokenizer:
    """
    Lazy, restartable row sequence over one export.

    Every iteration re-reads the text from the start; nothing is carried
    between iterations. Quoted cells may contain delimiters and newlines, and
    a doubled quote inside a quoted cell is a literal quote.

    Rows shorter than `min_cells` are yielded as `SkippedRow` (the first
    non-blank row is exempt since it may be a header).
    """

    def __init__(
        self,
        source: Union[str, bytes],
        *,
        min_cells: int = 0,
        delimiter: str = ",",
        quotechar: str = '"',
    ):
        if isinstance(source, bytes):
            decoded = decode_csv_bytes(source)
            self.text = decoded.text
            self.encoding = decoded.encoding
        else:
            self.text = strip_bom(source)
            self.encoding = None
        self.min_cells = min_cells
        self.delimiter = delimiter
        self.quotechar = quotechar

    def __iter__(self) -> Iterator[RowOutcome]:
        reader = csv.reader(
            io.StringIO(self.text, newline=""),
            delimiter=self.delimiter,
            quotechar=self.quotechar,
            doublequote=True,
            strict=False,
        )
        first = True
        for raw in reader:
            cells = tuple(cell.strip() for cell in raw)
            if not any(cells):
                continue
            line_no = reader.line_num
            if not first and len(cells) < self.min_cells:
                logger.warning(
                    "CSV: skipping short row line=%s cells=%s min=%s",
                    line_no,
                    len(cells),
                    self.min_cells,
                )
                yield SkippedRow(line_no, "short_row", f"{len(cells)} < {self.min_cells} cells")
            else:
                yield TokenizedRow(line_no, cells)
            first = False

    def rows(self) -> List[TokenizedRow]:
        return [row for row in self if isinstance(row, TokenizedRow)]


def tokenize(source: Union[str, bytes], min_cells: int = 0) -> List[RowOutcome]:
    return list(CsvTokenizer(source, min_cells=min_cells))
