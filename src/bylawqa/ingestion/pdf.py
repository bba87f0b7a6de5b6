"""Bylaw PDF helpers: filename parsing and on-demand text extraction."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import fitz  # PyMuPDF

from bylawqa.core.types import DEFAULT_CATEGORY

logger = logging.getLogger(__name__)

# "4742-Tree-Protection-Bylaw-2020-CONSOLIDATED.pdf", "3210 - Anti-Noise Bylaw.pdf",
# "Tax Rates Bylaw 2024, No. 4861.pdf"
_LEADING_NUMBER = re.compile(r"^(?:bylaw[-\s]*)?(\d{4})(?=[-,_\s.]|$)", re.IGNORECASE)
_ANY_NUMBER = re.compile(r"(?<!\d)(\d{4})(?!\d)")
_CONSOLIDATED = re.compile(r"consolidat", re.IGNORECASE)


@dataclass
class BylawFile:
    """A bylaw PDF on disk with what its filename tells us."""

    path: Path
    bylaw_number: str | None
    title: str
    is_consolidated: bool

    @property
    def filename(self) -> str:
        return self.path.name


def extract_bylaw_number(filename: str) -> str | None:
    """Pull the four digit bylaw number out of a PDF filename.

    A leading number wins; otherwise "No. NNNN" style references are used.
    Years are not excluded by the pattern, so the leading position matters.
    """
    stem = Path(filename).stem
    match = _LEADING_NUMBER.match(stem)
    if match:
        return match.group(1)
    no_match = re.search(r"No\.?\s*(\d{4})", stem, re.IGNORECASE)
    if no_match:
        return no_match.group(1)
    any_match = _ANY_NUMBER.search(stem)
    return any_match.group(1) if any_match else None


def format_bylaw_title(filename: str) -> str:
    """Turn a PDF filename into a readable title."""
    title = Path(filename).stem
    title = re.sub(r"^(?:bylaw[-\s]*)?\d{4}[-,_\s]*", "", title, flags=re.IGNORECASE)
    title = re.sub(r"[-_]+", " ", title)
    title = re.sub(r"\s{2,}", " ", title)
    return title.strip(" ,") or Path(filename).stem


def parse_bylaw_file(path: Path) -> BylawFile:
    return BylawFile(
        path=path,
        bylaw_number=extract_bylaw_number(path.name),
        title=format_bylaw_title(path.name),
        is_consolidated=bool(_CONSOLIDATED.search(path.name)),
    )


def list_bylaw_pdfs(pdf_dir: Path) -> list[BylawFile]:
    """List PDFs in a directory, sorted by filename for stable ordering."""
    if not pdf_dir.is_dir():
        raise FileNotFoundError(f"PDF directory not found: {pdf_dir}")
    files = sorted(p for p in pdf_dir.iterdir() if p.is_file() and p.suffix.lower() == ".pdf")
    return [parse_bylaw_file(p) for p in files]


# Title words that place a whole PDF in one category when no chunk metadata exists
_CATEGORY_WORDS = (
    ("trees", ("tree",)),
    ("animals", ("animal", "dog", "pound")),
    ("noise", ("noise",)),
    ("zoning", ("zoning", "land use", "subdivision", "community plan")),
    ("building", ("building", "plumbing", "fire prevention")),
    ("traffic", ("traffic", "street", "parking", "driveway")),
)


def guess_category(title: str) -> str:
    """Best-effort category for a PDF from its title; general when nothing matches."""
    lower = title.lower()
    for category, words in _CATEGORY_WORDS:
        if any(re.search(rf"\b{w}", lower) for w in words):
            return category
    return DEFAULT_CATEGORY


def _pdf_patterns(bylaw_number: str) -> list[re.Pattern]:
    n = re.escape(bylaw_number)
    return [
        re.compile(rf"^{n}\.pdf$", re.IGNORECASE),  # 3152.pdf
        re.compile(rf"^{n}[\s_-]", re.IGNORECASE),  # 3152 - Something.pdf, 3152_Something.pdf
        re.compile(rf"^{n},", re.IGNORECASE),  # 3152, Something.pdf
        re.compile(rf"Bylaw[\s_-]+(?:No\.?[\s_-]+)?{n}(?!\d)", re.IGNORECASE),  # ... Bylaw No. 3152
    ]


def find_pdf(pdf_dir: Path, bylaw_number: str) -> BylawFile | None:
    """Locate the PDF for a bylaw number.

    Patterns are tried in order of strictness across the whole directory, so
    "3152.pdf" beats an amendment bylaw that merely mentions 3152.
    """
    files = list_bylaw_pdfs(pdf_dir)
    for pattern in _pdf_patterns(bylaw_number.strip()):
        for f in files:
            if pattern.search(f.filename):
                return f
    return None


class PdfTextExtractor(Protocol):
    def __call__(self, path: Path) -> str: ...


def extract_pdf_text(path: Path) -> str:
    """Extract plain text from every page of a PDF."""
    doc = fitz.open(str(path))
    try:
        pages = [page.get_text("text") for page in doc]
    finally:
        doc.close()
    text = "\n".join(pages)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    logger.debug("Extracted %d chars from %s", len(text), path.name)
    return text.strip()
