"""Document readers — turn a source locator into a :class:`Document` tree.

A reader receives the locator (file path or URL) and the identifier the
pipeline derived for it, and either returns a populated document or
raises :class:`~rag_ingest.exceptions.SourceNotFoundError` /
:class:`~rag_ingest.exceptions.SourceUnreadableError`.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

import requests
from langchain_community.document_loaders import PyPDFLoader

from rag_ingest.documents.models import (
    Document,
    Element,
    Footer,
    Header,
    Image,
    Paragraph,
    Section,
    Table,
)
from rag_ingest.exceptions import SourceNotFoundError, SourceUnreadableError, ValidationError

logger = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?[ \t#]*$")
_FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")
_THEMATIC_BREAK_RE = re.compile(r"^ {0,3}([-*_])(?:[ \t]*\1){2,}[ \t]*$")
_SETEXT_UNDERLINE_RE = re.compile(r"^ {0,3}(=+|-+)[ \t]*$")
_LIST_ITEM_RE = re.compile(r"^ {0,3}(?:[-*+]|\d{1,9}[.)])[ \t]+(.*)$")
_QUOTE_RE = re.compile(r"^ {0,3}> ?(.*)$")
_TABLE_SEPARATOR_RE = re.compile(r"^ {0,3}\|?[ \t]*:?-+:?[ \t]*(\|[ \t]*:?-+:?[ \t]*)*\|?[ \t]*$")
_IMAGE_RE = re.compile(r"^!\[(?P<alt>[^\]]*)\]\((?P<url>[^)\s]*)(?:\s+\"(?P<title>[^\"]*)\")?\)$")
_DATA_URI_RE = re.compile(r"^data:(?P<media_type>image/[\w.+-]+);base64,(?P<payload>.*)$")

_URL_SCHEMES = ("http://", "https://")


class DocumentReader(ABC):
    """Reads one source into a document tree."""

    @abstractmethod
    async def read(self, source: str | Path, identifier: str) -> Document:
        """Return the document stored at *source*, keyed by *identifier*."""
        ...


# ---------------------------------------------------------------------------
# Markdown
# ---------------------------------------------------------------------------


def _is_block_start(line: str) -> bool:
    return bool(
        _HEADING_RE.match(line)
        or _FENCE_RE.match(line)
        or _THEMATIC_BREAK_RE.match(line)
        or _QUOTE_RE.match(line)
        or _LIST_ITEM_RE.match(line)
    )


def _closes_fence(line: str, marker: str) -> bool:
    # A closing fence repeats the opening character at least as often and carries no info string.
    stripped = line.strip()
    return len(stripped) >= len(marker) and set(stripped) == {marker[0]}


def _split_row(row: str) -> list[str]:
    cells = row.strip()
    if cells.startswith("|"):
        cells = cells[1:]
    if cells.endswith("|"):
        cells = cells[:-1]
    return [cell.strip() for cell in cells.split("|")]


def _table(lines: list[str]) -> Table:
    rows: list[list[Element | None]] = []
    for index, row in enumerate(lines):
        if index == 1:
            continue  # header separator
        rows.append([Paragraph(markdown=cell, text=cell) if cell else None for cell in _split_row(row)])
    return Table(markdown="\n".join(lines), cells=rows)


def _paragraph(lines: list[str], after_break: bool) -> Element:
    markdown = "\n".join(lines)
    text = " ".join(line.strip() for line in lines)

    image = _IMAGE_RE.match(text)
    if image:
        content: bytes | None = None
        media_type: str | None = None
        data_uri = _DATA_URI_RE.match(image.group("url"))
        if data_uri:
            try:
                content = base64.b64decode(data_uri.group("payload"), validate=True)
                media_type = data_uri.group("media_type")
            except (binascii.Error, ValueError):
                logger.warning("Ignoring malformed base64 image payload")
        return Image(
            markdown=markdown,
            content=content,
            media_type=media_type,
            description=image.group("alt") or None,
            caption=image.group("title"),
        )
    if after_break:
        return Footer(markdown=markdown, text=text)
    return Paragraph(markdown=markdown, text=text)


def _parse_blocks(lines: list[str]) -> list[Element]:
    elements: list[Element] = []
    after_break = False
    i = 0
    while i < len(lines):
        line = lines[i]
        if not line.strip():
            i += 1
            continue

        if _THEMATIC_BREAK_RE.match(line):
            after_break = True
            i += 1
            continue

        fence = _FENCE_RE.match(line)
        heading = _HEADING_RE.match(line)
        if fence:
            marker = fence.group(1)
            end = i + 1
            while end < len(lines) and not _closes_fence(lines[end], marker):
                end += 1
            block = lines[i : end + 1]
            code = "\n".join(lines[i + 1 : end])
            elements.append(Paragraph(markdown="\n".join(block), text=code))
            i = end + 1
        elif heading:
            elements.append(
                Header(markdown=line, text=(heading.group(2) or "").strip(), level=len(heading.group(1)))
            )
            i += 1
        elif line.lstrip().startswith("|") and i + 1 < len(lines) and _TABLE_SEPARATOR_RE.match(lines[i + 1]):
            end = i + 2
            while end < len(lines) and lines[end].lstrip().startswith("|"):
                end += 1
            elements.append(_table(lines[i:end]))
            i = end
        elif _QUOTE_RE.match(line):
            end = i
            while end < len(lines) and _QUOTE_RE.match(lines[end]):
                end += 1
            inner = [_QUOTE_RE.match(quoted).group(1) for quoted in lines[i:end]]  # type: ignore[union-attr]
            elements.append(Section(markdown="\n".join(lines[i:end]), elements=_parse_blocks(inner)))
            i = end
        elif _LIST_ITEM_RE.match(line):
            end = i
            items: list[list[str]] = []
            while end < len(lines):
                item = _LIST_ITEM_RE.match(lines[end])
                if item:
                    items.append([item.group(1)])
                elif lines[end].strip() and lines[end][:1] in (" ", "\t"):
                    items[-1].append(lines[end].strip())
                else:
                    break
                end += 1
            list_section = Section(
                markdown="\n".join(lines[i:end]),
                elements=[_paragraph(item_lines, after_break) for item_lines in items if item_lines[0].strip()],
            )
            elements.append(list_section)
            i = end
        else:
            end = i + 1
            while (
                end < len(lines)
                and lines[end].strip()
                and not _is_block_start(lines[end])
                and not _SETEXT_UNDERLINE_RE.match(lines[end])
            ):
                end += 1
            underline = _SETEXT_UNDERLINE_RE.match(lines[end]) if end < len(lines) else None
            if underline:
                # "Title\n-----" is a heading, not a paragraph plus a thematic break.
                elements.append(
                    Header(
                        markdown="\n".join(lines[i : end + 1]),
                        text=" ".join(title.strip() for title in lines[i:end]),
                        level=1 if underline.group(1).startswith("=") else 2,
                    )
                )
                i = end + 1
            else:
                elements.append(_paragraph(lines[i:end], after_break))
                i = end
        after_break = False
    return elements


def parse_markdown(markdown: str, identifier: str) -> Document:
    """Parse *markdown* into a document with a single root section.

    Supported blocks: ATX headings, paragraphs, fenced code, pipe tables,
    images (a paragraph holding only ``![alt](url)``), lists and block
    quotes (nested sections).  A paragraph right after a thematic break
    (``---``) is treated as a footer.
    """
    lines = markdown.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    root = Section(markdown=markdown, elements=_parse_blocks(lines))
    return Document(identifier=identifier, markdown=markdown, sections=[root])


class MarkdownReader(DocumentReader):
    """Reads Markdown from a local file or an ``http(s)`` URL.

    Parameters
    ----------
    encoding:
        Text encoding of local files.
    request_timeout:
        Seconds to wait for a remote source.
    """

    def __init__(self, encoding: str = "utf-8", request_timeout: int = 60) -> None:
        self.encoding = encoding
        self.request_timeout = request_timeout

    async def read(self, source: str | Path, identifier: str) -> Document:
        if not identifier:
            raise ValidationError("identifier is required")

        locator = str(source)
        if locator.startswith(_URL_SCHEMES):
            text = await asyncio.to_thread(self._fetch, locator)
        else:
            text = await asyncio.to_thread(self._read_file, Path(source))
        return parse_markdown(text, identifier)

    def _read_file(self, path: Path) -> str:
        try:
            return path.read_text(encoding=self.encoding)
        except FileNotFoundError as exc:
            raise SourceNotFoundError(str(path), "file does not exist") from exc
        except (UnicodeDecodeError, OSError) as exc:
            raise SourceUnreadableError(str(path), str(exc)) from exc

    def _fetch(self, url: str) -> str:
        try:
            resp = requests.get(url, timeout=self.request_timeout)
        except requests.RequestException as exc:
            raise SourceUnreadableError(url, str(exc)) from exc
        if resp.status_code == 404:
            raise SourceNotFoundError(url, "HTTP 404")
        try:
            resp.raise_for_status()
        except requests.HTTPError as exc:
            raise SourceUnreadableError(url, str(exc)) from exc
        return resp.text


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------


class PdfReader(DocumentReader):
    """Reads a PDF with LangChain's ``PyPDFLoader``; one section per page."""

    async def read(self, source: str | Path, identifier: str) -> Document:
        if not identifier:
            raise ValidationError("identifier is required")

        path = Path(source)
        if not path.is_file():
            raise SourceNotFoundError(str(path), "file does not exist")
        try:
            pages = await asyncio.to_thread(PyPDFLoader(str(path)).load)
        except Exception as exc:
            raise SourceUnreadableError(str(path), str(exc)) from exc

        sections: list[Section] = []
        for index, page in enumerate(pages):
            page_number = int(page.metadata.get("page", index)) + 1
            blocks = [block.strip() for block in re.split(r"\n\s*\n", page.page_content) if block.strip()]
            sections.append(
                Section(
                    markdown=page.page_content,
                    page_number=page_number,
                    elements=[
                        Paragraph(markdown=block, text=block, page_number=page_number)
                        for block in blocks
                    ],
                )
            )

        logger.debug("Read %d pages from %s", len(sections), path)
        return Document(
            identifier=identifier,
            markdown="\n\n".join(page.page_content for page in pages),
            sections=sections,
        )
