"""
Question/option extraction.

The bot does not use one canonical menu format, so several grammars are
tried in order and the first that yields a usable menu wins:

1. "<question>\\n<options>\\n\\nPlease Enter input A or B only"
2. "<question>\\n<options>\\n\\nPlease Enter input between A to B only"
3. a question paragraph followed by "1. text" style lines
4. a question paragraph followed by ALL CAPS lines

Nothing is invented: fewer than two options means no menu.
"""

import logging
import re
from typing import Callable, Optional

from careena.interpret.patterns import mentions_patient_info_labels
from careena.models.classification import QuestionWithOptions

logger = logging.getLogger(__name__)

INSTRUCTION_MARKER = "please enter input"

_BINARY_RE = re.compile(
    r"\n\s*please enter input\s+(?P<a>[^\s]+)\s+or\s+(?P<b>[^\s]+)\s+only\b",
    re.IGNORECASE,
)
_RANGE_RE = re.compile(
    r"\n\s*please enter input\s+between\s+(?P<a>\d+)\s+(?:to|and|-)\s+(?P<b>\d+)\s+only\b",
    re.IGNORECASE,
)
_NUMBERED_RE = re.compile(r"^(\d+)\.?\s*(\S.*)$")
_ALL_CAPS_RE = re.compile(r"^[A-Z](?:[A-Z ]*[A-Z])?$")
_PARAGRAPH_RE = re.compile(r"\n\s*\n")

MIN_OPTIONS = 2


def _lines(block: str) -> list[str]:
    return [line.strip() for line in block.splitlines() if line.strip()]


def _clean_option(line: str) -> str:
    return line.strip().strip("*").strip()


def _question_block(text: str, start: int) -> Optional[tuple[str, list[str]]]:
    lines = [l for l in _lines(text[:start]) if INSTRUCTION_MARKER not in l.lower()]
    if len(lines) < 1 + MIN_OPTIONS:
        return None
    return lines[0], lines[1:]


def _split_question(text: str) -> tuple[str, list[str]]:
    """First paragraph is the question; with a single paragraph, the first line is."""
    stripped = text.strip()
    paragraphs = _PARAGRAPH_RE.split(stripped, maxsplit=1)
    if len(paragraphs) == 2:
        question = " ".join(_lines(paragraphs[0]))
        rest = paragraphs[1]
    else:
        head, _, rest = stripped.partition("\n")
        question = head.strip()
    candidates = [l for l in _lines(rest) if INSTRUCTION_MARKER not in l.lower()]
    return question, candidates


def _explicit_binary(text: str) -> Optional[QuestionWithOptions]:
    match = _BINARY_RE.search(text)
    if not match:
        return None
    block = _question_block(text, match.start())
    if block is None:
        return None
    question, options = block
    return QuestionWithOptions(question=question, options=options, option_numbers=[match["a"], match["b"]])


def _explicit_range(text: str) -> Optional[QuestionWithOptions]:
    match = _RANGE_RE.search(text)
    if not match:
        return None
    low, high = int(match["a"]), int(match["b"])
    if high < low:
        return None
    block = _question_block(text, match.start())
    if block is None:
        return None
    question, options = block
    numbers = [str(n) for n in range(low, high + 1)]
    if len(numbers) != len(options):
        logger.debug(f"Range {low}-{high} does not cover {len(options)} options; falling through")
        return None
    return QuestionWithOptions(question=question, options=options, option_numbers=numbers)


def _numbered_list(text: str) -> Optional[QuestionWithOptions]:
    question, candidates = _split_question(text)
    if not question:
        return None
    options: list[str] = []
    numbers: list[str] = []
    unnumbered = False
    for line in candidates:
        cleaned = _clean_option(line)
        match = _NUMBERED_RE.match(cleaned)
        if match:
            numbers.append(match.group(1))
            options.append(_clean_option(match.group(2)))
        elif cleaned:
            unnumbered = True
            options.append(cleaned)
    if not numbers or len(options) < MIN_OPTIONS:
        return None
    return QuestionWithOptions(
        question=question,
        options=options,
        option_numbers=None if unnumbered else numbers,
    )


def _all_caps_list(text: str) -> Optional[QuestionWithOptions]:
    question, candidates = _split_question(text)
    if not question:
        return None
    options = [c for c in (_clean_option(l) for l in candidates) if _ALL_CAPS_RE.match(c)]
    if len(options) < MIN_OPTIONS:
        return None
    return QuestionWithOptions(question=question, options=options, option_numbers=None)


GRAMMARS: tuple[Callable[[str], Optional[QuestionWithOptions]], ...] = (
    _explicit_binary,
    _explicit_range,
    _numbered_list,
    _all_caps_list,
)


def parse_question(text: str) -> Optional[QuestionWithOptions]:
    """Extract a question and its ordered options, or None when there is no menu."""
    if not isinstance(text, str) or not text.strip():
        return None
    if mentions_patient_info_labels(text):
        return None
    normalized = text.replace("\r\n", "\n")
    for grammar in GRAMMARS:
        try:
            result = grammar(normalized)
        except Exception as e:
            logger.debug(f"Question grammar {grammar.__name__} failed: {e}")
            continue
        if result is not None and len(result.options) >= MIN_OPTIONS:
            return result
    return None
