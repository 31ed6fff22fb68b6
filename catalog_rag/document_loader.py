import csv
import logging
import os
from typing import List, Optional, Union

from .errors import MalformedRecord, SourceNotFound

logger = logging.getLogger(__name__)


class Document:
    """One review record, identified by its zero-based row in the corpus."""

    __slots__ = ("_text", "_source", "_row")

    def __init__(self, text: str, source: str, row: int):
        self._text = text
        self._source = source
        self._row = row

    @property
    def text(self) -> str:
        return self._text

    @property
    def source(self) -> str:
        return self._source

    @property
    def row(self) -> int:
        return self._row

    @property
    def id(self) -> str:
        return str(self._row)

    def __eq__(self, other):
        if not isinstance(other, Document):
            return NotImplemented
        return (self._text, self._source, self._row) == (other._text, other._source, other._row)

    def __hash__(self):
        return hash((self._text, self._source, self._row))

    def __repr__(self):
        preview = self._text[:60].replace("\n", " ")
        return f"Document(source='{self._source}', row={self._row}, text='{preview}...')"


class CorpusLoader:
    """
    Loads review records from a delimited file with a header row.

    Args:
        column:    Name of the text column, or its zero-based position.
        delimiter: Field delimiter, "," by default.
        encoding:  File encoding.
    """

    def __init__(
        self,
        column: Union[str, int] = "review_text",
        delimiter: str = ",",
        encoding: str = "utf-8-sig",
    ):
        self.column = column
        self.delimiter = delimiter
        self.encoding = encoding

    def load(self, source: str, column: Optional[Union[str, int]] = None) -> List[Document]:
        """
        Read every data row of ``source`` in file order.

        Raises:
            SourceNotFound:  the file cannot be opened.
            MalformedRecord: the header lacks the column, a row has no
                             value for it, or a row cannot be decoded/parsed.
        """
        column = self.column if column is None else column
        source = os.fspath(source)

        try:
            fh = open(source, "r", encoding=self.encoding, newline="")
        except OSError as exc:
            raise SourceNotFound(f"Cannot open corpus source {source!r}: {exc}") from exc

        with fh:
            reader = csv.reader(fh, delimiter=self.delimiter)
            try:
                docs = self._read_rows(reader, column, source)
            except (UnicodeDecodeError, csv.Error) as exc:
                line = reader.line_num + 1
                raise MalformedRecord(f"{source}:{line}: unreadable row: {exc}", line=line) from exc

        logger.info("Loaded %d records from %s", len(docs), source)
        return docs

    def _read_rows(self, reader, column: Union[str, int], source: str) -> List[Document]:
        try:
            header = next(reader)
        except StopIteration:
            logger.warning("Corpus source %s is empty", source)
            return []
        position = self._resolve_column(header, column, source)

        docs = []
        for fields in reader:
            if not fields:
                continue
            if position >= len(fields):
                raise MalformedRecord(
                    f"{source}:{reader.line_num}: row has {len(fields)} field(s), "
                    f"missing column {column!r}",
                    line=reader.line_num,
                )
            docs.append(Document(text=fields[position], source=source, row=len(docs)))
        return docs

    @staticmethod
    def _resolve_column(header: List[str], column: Union[str, int], source: str) -> int:
        if isinstance(column, int):
            if not 0 <= column < len(header):
                raise MalformedRecord(
                    f"{source}:1: column index {column} out of range for "
                    f"{len(header)} header field(s)",
                    line=1,
                )
            return column
        names = [name.strip() for name in header]
        if column not in names:
            raise MalformedRecord(
                f"{source}:1: header has no column {column!r} (found {names})",
                line=1,
            )
        return names.index(column)

    def __repr__(self) -> str:
        return f"CorpusLoader(column={self.column!r}, delimiter={self.delimiter!r})"
