"""
Streaming parser for concatenated SD file record streams.

Records are extracted one at a time from any iterable of text lines, so a
multi-gigabyte dump is never held in memory. Two record-delimiting policies
are supported:

- SCANNING: the structure block is every line up to the first metadata line
  (a line starting with ``>``); the record ends at the ``$$$$`` terminator.
- STRUCTURED: the structure block is read from its counts line: a 4-line
  header, exactly the declared atom and bond lines, then everything up to
  and including ``M  END``. Metadata is scanned up to ``$$$$`` as above.

In both policies the identifier is the line following an exact id tag line
(e.g. ``> <PUBCHEM_COMPOUND_CID>``), with an optional literal prefix removed.
"""

import re
from enum import Enum
from typing import Iterable, Iterator, List, Optional

from ..core.exceptions import MalformedRecordError
from ..core.models import ParsedRecord


RECORD_TERMINATOR = "$$$$"
BLOCK_END = "M  END"
HEADER_LINES = 4

_INTEGER = re.compile(r"-?[0-9]+")


class RecordPolicy(str, Enum):
    """Record-delimiting policy."""
    SCANNING = "scanning"
    STRUCTURED = "structured"


class _LineCursor:
    """Forward-only line cursor that tracks line numbers for diagnostics."""

    def __init__(self, lines: Iterable[str], source: str):
        self._lines = iter(lines)
        self.source = source
        self.line_number = 0

    def next(self) -> Optional[str]:
        """Return the next line without its terminator, or None at end of stream."""
        try:
            line = next(self._lines)
        except StopIteration:
            return None
        self.line_number += 1
        return line.rstrip("\r\n")

    def error(self, message: str) -> MalformedRecordError:
        return MalformedRecordError(message, source=self.source, line_number=self.line_number)


class SdfRecordParser:
    """
    Extracts (identifier, payload) records from an SD file line stream.

    The parser is stateless between calls; each call to parse() consumes its
    input lazily and cannot be restarted.
    """

    def __init__(
        self,
        id_tag: str,
        id_prefix: str = "",
        policy: RecordPolicy = RecordPolicy.SCANNING,
    ):
        """
        Initialize the parser.

        Args:
            id_tag: Data field holding the identifier (e.g. PUBCHEM_COMPOUND_CID),
                or a complete tag line starting with '>'
            id_prefix: Literal prefix removed from the identifier value (e.g. CHEMBL)
            policy: Record-delimiting policy
        """
        self.tag_line = id_tag if id_tag.startswith(">") else f"> <{id_tag}>"
        self.id_prefix = id_prefix or ""
        self.policy = RecordPolicy(policy)

    def parse(self, lines: Iterable[str], source: str = "<stream>") -> Iterator[ParsedRecord]:
        """
        Lazily parse records from a line stream.

        Args:
            lines: Decoded text lines (a text stream works)
            source: Name used in error messages

        Yields:
            ParsedRecord per record; compound_id is None when no id tag was found

        Raises:
            MalformedRecordError: If a record is truncated or its identifier or
                counts cannot be parsed as integers
        """
        cursor = _LineCursor(lines, source)
        while True:
            line = cursor.next()
            if line is None:
                return

            if self.policy == RecordPolicy.STRUCTURED:
                record = self._parse_structured(cursor, line)
            else:
                record = self._parse_scanning(cursor, line)

            if record is None:
                return
            yield record

    def _parse_scanning(self, cursor: _LineCursor, line: str) -> Optional[ParsedRecord]:
        block: List[str] = []
        while line is not None and not line.startswith(">") and line != RECORD_TERMINATOR:
            block.append(line)
            line = cursor.next()

        if line is None:
            if _is_blank(block):
                return None
            raise cursor.error("stream ends inside a record")

        compound_id = self._scan_metadata(cursor, line)
        return ParsedRecord(compound_id=compound_id, payload=_join(block))

    def _parse_structured(self, cursor: _LineCursor, line: str) -> Optional[ParsedRecord]:
        block = [line]
        while len(block) < HEADER_LINES:
            line = cursor.next()
            if line is None:
                if _is_blank(block):
                    return None
                raise cursor.error("stream ends inside a record header")
            block.append(line)

        counts_line = block[HEADER_LINES - 1]
        atom_count = self._parse_count(cursor, counts_line[0:3], "atom")
        bond_count = self._parse_count(cursor, counts_line[3:6], "bond")

        for _ in range(atom_count + bond_count):
            line = cursor.next()
            if line is None:
                raise cursor.error(
                    f"header declares {atom_count} atoms and {bond_count} bonds "
                    f"but the stream ends first"
                )
            block.append(line)

        while True:
            line = cursor.next()
            if line is None:
                raise cursor.error(f"stream ends before '{BLOCK_END}'")
            block.append(line)
            if line == BLOCK_END:
                break

        compound_id = self._scan_metadata(cursor, cursor.next())
        # A record transcript begins with an empty line.
        return ParsedRecord(compound_id=compound_id, payload="\n" + _join(block))

    def _scan_metadata(self, cursor: _LineCursor, line: Optional[str]) -> Optional[int]:
        compound_id = None
        while True:
            if line is None:
                raise cursor.error(f"stream ends before record terminator '{RECORD_TERMINATOR}'")
            if line == RECORD_TERMINATOR:
                return compound_id
            if line == self.tag_line:
                value = cursor.next()
                if value is None:
                    raise cursor.error(f"stream ends after id tag '{self.tag_line}'")
                compound_id = self._parse_identifier(cursor, value)
            line = cursor.next()

    def _parse_identifier(self, cursor: _LineCursor, value: str) -> int:
        text = value
        # Literal prefix at position 0 only; identifiers may contain regex metacharacters.
        if self.id_prefix and text.startswith(self.id_prefix):
            text = text[len(self.id_prefix):]
        text = text.strip()
        if not _INTEGER.fullmatch(text):
            raise cursor.error(f"identifier {value!r} is not an integer")
        return int(text)

    def _parse_count(self, cursor: _LineCursor, field: str, what: str) -> int:
        text = field.strip()
        if not _INTEGER.fullmatch(text) or int(text) < 0:
            raise cursor.error(f"invalid {what} count {field!r} in counts line")
        return int(text)


def _join(lines: List[str]) -> str:
    return "".join(line + "\n" for line in lines)


def _is_blank(lines: List[str]) -> bool:
    return all(not line.strip() for line in lines)
