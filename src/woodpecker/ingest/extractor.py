"""Format-aware text extraction from raw bytes.

Dispatch order (declared media type first, file extension as fallback):
  text/plain, text/csv, text/markdown, application/json, .txt .csv .md
                      → decode bytes as UTF-8
  application/pdf .pdf → multimodal completion (extraction.pdf_mode = llm)
                         or pypdf page text (extraction.pdf_mode = local)
  docx / xlsx / pptx  → scrape <w:t> / <t> / <a:t> text nodes from the
                         container's XML parts; raw decoded text if none match
  application/epub+zip .epub → spine-ordered chapters via bs4 + html2text
  text/html .html .htm → bs4 + html2text
  anything else       → decode bytes as UTF-8

A wrong or missing media type must not block extraction: office and EPUB
payloads that are not valid ZIP archives degrade to decoded text instead
of failing.
"""

from __future__ import annotations

import base64
import html
import io
import logging
import re
import warnings
import zipfile
import zlib
from pathlib import PurePosixPath

import html2text
import pypdf
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning

from woodpecker.config import ExtractionCfg
from woodpecker.errors import ExtractionError, TransientServiceError
from woodpecker.rag.llm_client import complete

# OPF/container files are XML parsed with html.parser on purpose (no lxml).
warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

logger = logging.getLogger(__name__)

_TEXT_MIME_TYPES = ("text/plain", "text/csv", "text/markdown", "application/json")
_TEXT_EXTS = {".txt", ".csv", ".md"}
_HTML_EXTS = {".html", ".htm"}

_PDF_PROMPT = (
    "Extract all the text content from this PDF document. Return only the "
    "extracted text, preserving the structure and formatting as much as possible. "
    "Do not add any commentary or explanation."
)

# kind → (media type marker, extension, text node pattern, XML part filter)
_OFFICE_FORMATS: dict[str, tuple[str, str, re.Pattern[str], re.Pattern[str]]] = {
    "docx": (
        "wordprocessingml",
        ".docx",
        re.compile(r"<w:t[^>]*>([^<]*)</w:t>"),
        re.compile(r"^word/(document|header\d*|footer\d*|footnotes)\.xml$"),
    ),
    "xlsx": (
        "spreadsheetml",
        ".xlsx",
        re.compile(r"<t[^>]*>([^<]*)</t>"),
        re.compile(r"^xl/(sharedStrings|worksheets/sheet\d+)\.xml$"),
    ),
    "pptx": (
        "presentationml",
        ".pptx",
        re.compile(r"<a:t>([^<]*)</a:t>"),
        re.compile(r"^ppt/slides/slide\d+\.xml$"),
    ),
}

# html2text converter — shared instance, thread-safe for read operations
_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


class TextExtractor:
    """Convert raw document bytes into plain text."""

    def __init__(self, config: ExtractionCfg | None = None) -> None:
        self.config = config or ExtractionCfg()

    def extract(self, data: bytes, path: str, mime_type: str | None = None) -> str:
        """Return the text content of *data*.

        Args:
            data: Raw file bytes.
            path: Storage key or filename; its extension is the fallback
                when *mime_type* is absent or wrong.
            mime_type: Declared media type, may be None.

        Raises:
            ExtractionError: Unsupported or corrupt content, or the
                extraction service failed.
        """
        mime = (mime_type or "").lower()
        ext = PurePosixPath(path).suffix.lower()
        logger.info("Extracting text from %s (media type %s)", path, mime_type)

        if any(t in mime for t in _TEXT_MIME_TYPES) or ext in _TEXT_EXTS:
            text = _decode(data)
            logger.debug("Decoded %d characters as text", len(text))
            return text

        if mime == "application/pdf" or ext == ".pdf":
            return self._extract_pdf(data)

        for kind, (marker, office_ext, pattern, parts) in _OFFICE_FORMATS.items():
            if marker in mime or ext == office_ext:
                text = _extract_office(data, pattern, parts)
                logger.debug("Extracted %d characters from %s", len(text), kind)
                return text

        if mime == "application/epub+zip" or ext == ".epub":
            try:
                return "\n\n".join(_extract_epub_chapters(data))
            except (zipfile.BadZipFile, zlib.error, EOFError, ValueError, KeyError) as exc:
                logger.warning("EPUB parsing failed (%s); decoding as text", exc)
                return _decode(data)

        if "text/html" in mime or ext in _HTML_EXTS:
            return html_to_text(_decode(data))

        text = _decode(data)
        logger.debug("Fallback decode: %d characters", len(text))
        return text

    # ------------------------------------------------------------------
    # PDF
    # ------------------------------------------------------------------

    def _extract_pdf(self, data: bytes) -> str:
        if self.config.pdf_mode == "local":
            return _extract_pdf_local(data)

        payload = base64.b64encode(data).decode("ascii")
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": _PDF_PROMPT},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:application/pdf;base64,{payload}"},
                    },
                ],
            }
        ]
        logger.info("Sending PDF (%d bytes) to %s for extraction", len(data), self.config.model)
        try:
            text = complete(self.config.model, messages)
        except TransientServiceError as exc:
            status = f" ({exc.status})" if exc.status else ""
            raise ExtractionError(f"Failed to extract text from PDF{status}: {exc}") from exc
        logger.info("Extracted %d characters from PDF", len(text))
        return text


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _extract_pdf_local(data: bytes) -> str:
    """Extract all page text with pypdf; pages without text are skipped."""
    try:
        reader = pypdf.PdfReader(io.BytesIO(data))
        parts = [(page.extract_text() or "").strip() for page in reader.pages]
    except (pypdf.errors.PyPdfError, zlib.error, ValueError, KeyError, TypeError) as exc:
        raise ExtractionError(f"Failed to read PDF: {exc}") from exc
    return "\n\n".join(p for p in parts if p)


def _extract_office(data: bytes, pattern: re.Pattern[str], parts: re.Pattern[str]) -> str:
    """Scrape text nodes matching *pattern*; fall back to the raw decoded text."""
    raw = _office_xml(data, parts)
    found = [m for m in pattern.findall(raw) if m]
    if not found:
        return raw
    return html.unescape(" ".join(found))


def _office_xml(data: bytes, parts: re.Pattern[str]) -> str:
    """Concatenate the matching XML parts of an OOXML container in document order.

    Payloads that are not ZIP archives are decoded as-is.

    Raises:
        ExtractionError: A member of the archive is corrupt.
    """
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile:
        return _decode(data)
    with zf:
        names = sorted((n for n in zf.namelist() if parts.match(n)), key=_natural_key)
        try:
            return "\n".join(_decode(zf.read(n)) for n in names)
        except (zipfile.BadZipFile, zlib.error, EOFError) as exc:
            raise ExtractionError(f"Corrupt office document: {exc}") from exc


def _natural_key(name: str) -> list:
    return [int(tok) if tok.isdigit() else tok for tok in re.split(r"(\d+)", name)]


def html_to_text(markup: str) -> str:
    """Strip HTML markup and return plain text via html2text."""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup.find_all(["script", "style", "nav", "footer", "head"]):
        tag.decompose()
    return _h2t.handle(str(soup)).strip()


def _extract_epub_chapters(data: bytes) -> list[str]:
    """Return ordered chapter texts of an EPUB (ZIP) payload."""
    chapters: list[str] = []
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        names = set(zf.namelist())
        opf_path = _find_opf_path(zf, names)
        hrefs = _parse_opf_spine(zf, opf_path)

        opf_dir = str(PurePosixPath(opf_path).parent)
        for href in hrefs:
            full_path = f"{opf_dir}/{href}".lstrip("/") if opf_dir != "." else href
            if full_path not in names:
                full_path = href
            if full_path not in names:
                continue
            text = html_to_text(_decode(zf.read(full_path)))
            if text.strip():
                chapters.append(text)
    return chapters


def _find_opf_path(zf: zipfile.ZipFile, names: set[str]) -> str:
    """Find the OPF package file path from META-INF/container.xml."""
    if "META-INF/container.xml" in names:
        soup = BeautifulSoup(_decode(zf.read("META-INF/container.xml")), "html.parser")
        rootfile = soup.find("rootfile")
        if rootfile and rootfile.get("full-path"):
            return rootfile["full-path"]
    for name in sorted(names):
        if name.endswith(".opf"):
            return name
    raise ValueError("No OPF package file found in EPUB archive.")


def _parse_opf_spine(zf: zipfile.ZipFile, opf_path: str) -> list[str]:
    """Parse OPF spine to return ordered list of chapter hrefs."""
    soup = BeautifulSoup(_decode(zf.read(opf_path)), "html.parser")

    manifest: dict[str, str] = {}
    for item in soup.find_all("item"):
        href = item.get("href", "")
        if "html" in item.get("media-type", "") or href.endswith((".html", ".xhtml", ".htm")):
            manifest[item.get("id", "")] = href

    hrefs = [
        manifest[ref.get("idref", "")]
        for ref in soup.find_all("itemref")
        if ref.get("idref", "") in manifest
    ]
    return hrefs or list(manifest.values())
