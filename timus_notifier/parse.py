"""
Parse module for the Timus Notifier pipeline.

This module turns the status page HTML into attempt records. It works
in two steps:

1. ``iter_table_tokens`` walks the submissions table and yields a flat
   token stream (row starts, cell starts and text nodes) in document order.
2. ``parse_tokens`` folds an explicit state machine over that stream. Each
   transition takes a ``ParserState`` and returns a new one, so the
   in-progress record, the active field and the previous text fragment are
   all carried in the state value.

The table rows carry no schema beyond the CSS class of each cell, so a
row is only known to be finished once the next row starts or the input
ends.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from timus_notifier.utils import get_logger, normalize_fragment


# Module logger
logger = get_logger("parse")

# Rows of the submissions table alternate between these classes
ROW_SELECTOR = "tr.even, tr.odd"

ACCEPTED_CLASS = "verdict_ac"
REJECTED_CLASS = "verdict_rj"

# Number of separator characters in front of the problem name (". Sum")
PROBLEM_NAME_PREFIX_LENGTH = 2

Attempt = Dict[str, Any]


@dataclass(frozen=True)
class RowStart:
    """A table row element was opened."""


@dataclass(frozen=True)
class CellStart:
    """A table cell element was opened; css_class is the raw class attribute."""
    css_class: Optional[str] = None


@dataclass(frozen=True)
class Text:
    """A text node inside a table cell."""
    text: str


Token = Union[RowStart, CellStart, Text]


class RowState(Enum):
    NO_ACTIVE_ROW = "no_active_row"
    ACCUMULATING_ROW = "accumulating_row"


@dataclass(frozen=True)
class ParserState:
    """
    Snapshot of the table parser between two tokens.

    Attributes:
        record: The in-progress attempt of the open row.
        completed: Attempts whose row boundary has been observed.
        active_field: Field that incoming text is assigned to, if any.
        row_state: Whether a row is currently open.
        prev_text: Last normalized text fragment, used to drop repeats.
    """
    record: Attempt = field(default_factory=dict)
    completed: Tuple[Attempt, ...] = ()
    active_field: Optional[str] = None
    row_state: RowState = RowState.NO_ACTIVE_ROW
    prev_text: str = ""


def classify_field(css_class: Optional[str]) -> Optional[str]:
    """
    Map a cell class to the field name its text belongs to.

    Every verdict flavour collapses to ``verdict``; any other class is
    used verbatim.

    Args:
        css_class: Raw class attribute of the cell, or None.

    Returns:
        Field name, or None for cells without a class.
    """
    if css_class and "verdict" in css_class:
        return "verdict"
    return css_class


def accepted_from_class(css_class: Optional[str]) -> Optional[bool]:
    """Return the accepted flag encoded in a verdict class, None if there is none."""
    if css_class == ACCEPTED_CLASS:
        return True
    if css_class == REJECTED_CLASS:
        return False
    return None


def _flush(state: ParserState) -> ParserState:
    if state.row_state is not RowState.ACCUMULATING_ROW:
        return state
    return replace(
        state,
        record={},
        completed=state.completed + (state.record,),
        row_state=RowState.NO_ACTIVE_ROW,
    )


def _on_row_start(state: ParserState) -> ParserState:
    state = _flush(state)
    return replace(state, active_field=None, row_state=RowState.ACCUMULATING_ROW)


def _on_cell_start(state: ParserState, token: CellStart) -> ParserState:
    record = state.record
    accepted = accepted_from_class(token.css_class)
    if accepted is not None:
        record = {**record, "accepted": accepted}

    return replace(
        state,
        record=record,
        active_field=classify_field(token.css_class),
        row_state=RowState.ACCUMULATING_ROW,
    )


def _on_text(state: ParserState, token: Text) -> ParserState:
    text = normalize_fragment(token.text)

    # Nested markup can repeat the same visible text
    if text == state.prev_text:
        return state
    state = replace(state, prev_text=text)

    name = state.active_field
    if not name or not text:
        return state

    record = state.record
    if name == "date" and not record.get("date"):
        # Time and day arrive as separate fragments
        record = {**record, "date": text + " "}
    elif name == "problem" and record.get("problem"):
        record = {**record, "problem_name": text[PROBLEM_NAME_PREFIX_LENGTH:]}
    else:
        record = {**record, name: record.get(name, "") + text}

    return replace(state, record=record)


def advance(state: ParserState, token: Token) -> ParserState:
    """
    Apply one token to the parser state.

    Args:
        state: Current parser state.
        token: Next token of the stream.

    Returns:
        The new parser state; the argument is left untouched.

    Raises:
        TypeError: If the token is of an unknown kind.
    """
    if isinstance(token, RowStart):
        return _on_row_start(state)
    if isinstance(token, CellStart):
        return _on_cell_start(state, token)
    if isinstance(token, Text):
        return _on_text(state, token)
    raise TypeError(f"Unexpected token: {token!r}")


def finish(state: ParserState) -> List[Attempt]:
    """
    Flush the last open row and return every attempt in source order.

    The last row of the page is never followed by another row start, so
    it only becomes complete here.
    """
    return list(_flush(state).completed)


def parse_tokens(tokens: Iterable[Token]) -> List[Attempt]:
    """
    Run the table state machine over a token stream.

    Args:
        tokens: Tokens in document order.

    Returns:
        Attempts in source order (newest first on the status page).
    """
    state = ParserState()
    for token in tokens:
        state = advance(state, token)
    return finish(state)


def _css_class(cell: Tag) -> Optional[str]:
    value = cell.get("class")
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return " ".join(value)
    return str(value)


def iter_table_tokens(html: str) -> Iterator[Token]:
    """
    Tokenize the submissions table of a status page.

    For every ``tr.even``/``tr.odd`` row yields a RowStart, then walks the
    row in document order yielding a CellStart per ``td`` and a Text per
    text node inside a cell, including text nested in links and spans.
    Text between cells is skipped.

    Args:
        html: Raw HTML content string.

    Yields:
        Tokens in document order.
    """
    soup = BeautifulSoup(html, "html.parser")

    for row in soup.select(ROW_SELECTOR):
        yield RowStart()
        for node in row.descendants:
            if isinstance(node, Tag):
                if node.name == "td":
                    yield CellStart(_css_class(node))
            elif isinstance(node, NavigableString) and not isinstance(node, PreformattedString):
                # Only text inside a cell belongs to a field
                if node.find_parent("td") is not None:
                    yield Text(str(node))


def parse_status_table(html: str) -> List[Attempt]:
    """
    Parse the status page HTML into attempt records.

    Args:
        html: Raw HTML content string.

    Returns:
        Attempts in page order (newest first). Missing cells simply leave
        fields absent.
    """
    if not html:
        logger.warning("Empty HTML content, no attempts to parse")
        return []

    attempts = parse_tokens(iter_table_tokens(html))
    logger.info(f"Extracted {len(attempts)} attempt(s) from status table")

    return attempts
