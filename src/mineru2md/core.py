"""Rendering pipeline for mineru2md: layout tree in, Markdown with inline HTML out."""

from __future__ import annotations

import base64
import html
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import regex

from .models import Block, LayoutDocument, Page, Span, TocEntry

LOG = logging.getLogger("mineru2md")

TITLE_LEVEL1_MAX_CHARS = 20
ANCHOR_SLUG_MAX_CHARS = 50
# Unicode Alphabetic or Numeric, plus the CJK Unified Ideographs range
_ANCHOR_CHAR_RE = regex.compile(r"[\p{Alphabetic}\p{N}\u4e00-\u9fa5]")

DEFAULT_MIME_TYPE = "image/jpeg"
MIME_TYPES_BY_EXTENSION = {
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}

DOCUMENT_STYLE = (
    "<style>\n"
    '  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, '
    '"Helvetica Neue", Arial, sans-serif; }\n'
    "  img { border-radius: 4px; }\n"
    "  code { background: #f4f4f4; padding: 0.2em 0.4em; border-radius: 3px; font-size: 0.9em; }\n"
    "  pre { background: #f8f8f8; padding: 1em; border-radius: 6px; overflow-x: auto; }\n"
    "</style>\n\n"
)
TOC_PLACEHOLDER = '<div id="toc-top"></div>\n\n'
SECTION_RULE = '<hr style="border: none; height: 1px; background: #ddd; margin: 2em 0;" />\n\n'
DOCUMENT_FOOTER = (
    '\n<hr style="border: none; height: 1px; background: #ddd; margin: 3em 0;" />\n'
    '<div style="text-align: center; color: #999; font-size: 0.85em; padding: 1em 0;">\n'
    "Generated by MinerU JSON to Markdown Converter\n"
    "</div>\n"
)

_FIGURE_IMG = (
    '<img src="{src}" alt="{alt}" style="max-width: 100%; height: auto; display: block; margin: 0 auto;" />'
)
_FIGCAPTION = '<figcaption style="text-align: center; font-size: 0.9em; color: #666; margin-top: 0.5em;">{text}</figcaption>'
_TABLE_CAPTION = '<caption style="font-weight: bold; margin-bottom: 0.5em;">{text}</caption>'
_TABLE_FOOTNOTE = '<p style="font-size: 0.85em; color: #666; margin-top: 0.5em;">{text}</p>'
_HEADER_BOX = (
    '<div style="background: #fafafa; padding: 0.5em 1em; margin-bottom: 1em; border-radius: 4px; '
    'font-size: 0.85em; color: #888;">\n<span>{text}</span>\n</div>\n\n'
)
_FOOTNOTE_BOX_OPEN = (
    '<div style="background: #f8f8f8; padding: 0.8em 1em; margin-top: 1.5em; border-left: 3px solid #ddd; '
    'border-radius: 0 4px 4px 0; font-size: 0.85em; color: #666;">\n'
)
_FOOTNOTE_LINE = '<p style="margin: 0.3em 0;">{text}</p>\n'


@dataclass
class ConversionResult:
    markdown: str
    page_count: int
    toc_entries: List[TocEntry] = field(default_factory=list)
    images_inlined: int = 0
    images_missing: int = 0


def _resolve_log_level(verbose: bool, debug: bool) -> int:
    return logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)


def _configure_mineru2md_logger(level: int) -> None:
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handler.setLevel(level)
        LOG.addHandler(handler)
    else:
        for handler in LOG.handlers:
            handler.setLevel(level)
            if handler.formatter is None:
                handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))


def setup_logging(verbose: bool, debug: bool) -> None:
    level = _resolve_log_level(verbose, debug)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    _configure_mineru2md_logger(level)


def _progress_bar_line(current: int, total: int, width: int = 24) -> str:
    if total <= 0:
        return "[?]"
    clamped = max(0, min(current, total))
    filled = min(int((clamped / total) * width), width)
    return "[" + "#" * filled + "." * (width - filled) + "]"


def _log_verbose_progress(prefix: str, current: int, total: int, detail: Optional[str] = None) -> None:
    if not LOG.isEnabledFor(logging.INFO):
        return
    bar = _progress_bar_line(current, total)
    counter = f"[{current}/{total}]" if total > 0 else f"[{current}]"
    if total > 0:
        msg = f"{prefix} {bar} {counter} ({(current / total) * 100.0:.1f}%)"
    else:
        msg = f"{prefix} {bar} {counter}"
    if detail:
        msg = f"{msg} | {detail}"
    LOG.info(msg)


def escape_html(text: str) -> str:
    return html.escape(text, quote=False)


def _iter_spans(block: Block) -> Iterable[Span]:
    for line in block.lines or []:
        yield from line.spans


def extract_text(block: Block) -> str:
    """Concatenate span text of ``block`` and all its descendants, depth first.

    Walks the tree with an explicit stack, so nesting depth is not limited by
    the interpreter recursion limit.
    """
    parts: List[str] = []
    pending: List[Block] = [block]
    while pending:
        current = pending.pop()
        for span in _iter_spans(current):
            if span.content:
                parts.append(span.content)
        if current.blocks:
            pending.extend(reversed(current.blocks))
    return "".join(parts)


def _is_anchor_char(ch: str) -> bool:
    return _ANCHOR_CHAR_RE.match(ch) is not None


def generate_anchor_id(title: str, page_idx: int) -> str:
    slug = "".join(ch if _is_anchor_char(ch) else "-" for ch in title)
    slug = slug.strip("-")[:ANCHOR_SLUG_MAX_CHARS]
    return f"toc-{page_idx}-{slug or 'title'}"


def _mime_type_for(path: Path) -> str:
    ext = path.suffix[1:].lower()
    return MIME_TYPES_BY_EXTENSION.get(ext, DEFAULT_MIME_TYPE)


def image_to_data_uri(image_path: str, base_dir: Path) -> Optional[str]:
    """Return ``image_path`` (relative to ``base_dir``) as a base64 data URI.

    A missing or unreadable file yields ``None``; callers render nothing for it.
    """
    full_path = base_dir / image_path
    if not full_path.exists():
        LOG.debug("Image not found: %s", full_path)
        return None
    try:
        data = full_path.read_bytes()
    except OSError as exc:
        LOG.debug("Unable to read image %s: %s", full_path, exc)
        return None
    payload = base64.b64encode(data).decode("ascii")
    return f"data:{_mime_type_for(full_path)};base64,{payload}"


class ImageInliner:
    """Inlines images below one base directory and counts hits and misses."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir
        self.inlined = 0
        self.missing = 0

    def inline(self, image_path: str) -> Optional[str]:
        uri = image_to_data_uri(image_path, self.base_dir)
        if uri is None:
            self.missing += 1
        else:
            self.inlined += 1
        return uri

    def first_inlined(self, block: Block, span_type: str) -> Optional[str]:
        for span in _iter_spans(block):
            if span.type == span_type and span.image_path:
                uri = self.inline(span.image_path)
                if uri is not None:
                    return uri
        return None


def render_title(block: Block, page_idx: int) -> Tuple[str, Optional[TocEntry]]:
    text = extract_text(block).strip()
    if not text:
        return "", None

    anchor_id = generate_anchor_id(text, page_idx)
    level = 1 if len(text) <= TITLE_LEVEL1_MAX_CHARS else 2
    hashes = "#" * (level + 1)
    entry = TocEntry(title=text, page=page_idx + 1, anchor_id=anchor_id, level=level)
    return f'<a id="{anchor_id}"></a>\n{hashes} {text}\n\n', entry


def render_rich_text(block: Block) -> str:
    parts: List[str] = []
    for span in _iter_spans(block):
        if span.content is None:
            continue
        if span.type == "inline_equation":
            parts.append(f"${span.content}$")
        elif span.type == "text":
            parts.append(span.content)
    return "".join(parts)


def render_text(block: Block) -> str:
    text = render_rich_text(block).strip()
    return f"{text}\n\n" if text else ""


def render_list(block: Block) -> str:
    items: List[str] = []
    for child in block.blocks or []:
        if child.type != "list_item":
            continue
        text = extract_text(child).strip()
        if text:
            items.append(f"- {text}")
    if not items:
        return ""
    return "\n".join(items) + "\n\n"


def render_image(block: Block, inliner: ImageInliner) -> str:
    image_html = ""
    captions: List[str] = []

    for child in block.blocks or []:
        if child.type == "image_body":
            if image_html:
                continue
            uri = inliner.first_inlined(child, "image")
            if uri is not None:
                image_html = _FIGURE_IMG.format(src=uri, alt="figure")
        elif child.type in ("image_caption", "image_footnote"):
            text = extract_text(child).strip()
            if text:
                captions.append(_FIGCAPTION.format(text=escape_html(text)))

    if not image_html:
        return ""
    return f'<figure style="margin: 1.5em 0; text-align: center;">\n{image_html}\n{"".join(captions)}\n</figure>\n\n'


def render_table(block: Block, inliner: ImageInliner) -> str:
    table_html = ""
    caption_html = ""
    footnote_html = ""

    for child in block.blocks or []:
        if child.type == "table_body":
            if table_html:
                continue
            uri = inliner.first_inlined(child, "table")
            if uri is not None:
                table_html = _FIGURE_IMG.format(src=uri, alt="table")
        elif child.type == "table_caption":
            text = extract_text(child).strip()
            if text:
                caption_html = _TABLE_CAPTION.format(text=escape_html(text))
        elif child.type == "table_footnote":
            text = extract_text(child).strip()
            if text:
                footnote_html = _TABLE_FOOTNOTE.format(text=escape_html(text))

    if not table_html:
        return ""
    return (
        '<div style="margin: 1.5em 0; overflow-x: auto;">\n'
        f"{caption_html}\n{table_html}\n{footnote_html}\n</div>\n\n"
    )


def render_interline_equation(block: Block, inliner: ImageInliner) -> str:
    for span in _iter_spans(block):
        if span.type != "interline_equation":
            continue
        if span.image_path:
            uri = inliner.inline(span.image_path)
            if uri is not None:
                return (
                    '<div style="margin: 1em 0; text-align: center;">\n'
                    f'<img src="{uri}" alt="equation" style="max-height: 80px;" />\n</div>\n\n'
                )
        if span.content:
            return f"\n$$\n{span.content}\n$$\n\n"
    return ""


def render_index(block: Block) -> str:
    text = extract_text(block).strip()
    return f"{text}\n\n" if text else ""


BlockRenderer = Callable[[Block, ImageInliner], str]

_CONTENT_RENDERERS: Dict[str, BlockRenderer] = {
    "text": lambda block, _inliner: render_text(block),
    "list": lambda block, _inliner: render_list(block),
    "image": render_image,
    "table": render_table,
    "interline_equation": render_interline_equation,
    "index": lambda block, _inliner: render_index(block),
}


def render_block(block: Block, page_idx: int, inliner: ImageInliner) -> Tuple[str, Optional[TocEntry]]:
    if block.type == "title":
        return render_title(block, page_idx)
    renderer = _CONTENT_RENDERERS.get(block.type)
    if renderer is None:
        LOG.debug("Unknown block type %r rendered as plain text", block.type)
        return render_index(block), None
    return renderer(block, inliner), None


def categorize_discarded_blocks(blocks: List[Block]) -> Tuple[List[Block], List[Block]]:
    headers = [block for block in blocks if block.type == "header"]
    footnotes = [block for block in blocks if block.type == "page_footnote"]
    return headers, footnotes


def render_discarded_headers(blocks: List[Block]) -> str:
    parts: List[str] = []
    for block in blocks:
        text = extract_text(block).strip()
        if text:
            parts.append(_HEADER_BOX.format(text=escape_html(text)))
    return "".join(parts)


def render_discarded_footnotes(blocks: List[Block]) -> str:
    lines: List[str] = []
    for block in blocks:
        text = extract_text(block).strip()
        if text:
            lines.append(_FOOTNOTE_LINE.format(text=escape_html(text)))
    if not lines:
        return ""
    return _FOOTNOTE_BOX_OPEN + "".join(lines) + "</div>\n\n"


def render_page(page: Page, inliner: ImageInliner) -> Tuple[str, List[TocEntry]]:
    headers, footnotes = categorize_discarded_blocks(page.discarded_blocks)

    parts: List[str] = [render_discarded_headers(headers)]
    toc_entries: List[TocEntry] = []
    for block in page.para_blocks:
        fragment, entry = render_block(block, page.page_idx, inliner)
        parts.append(fragment)
        if entry is not None:
            toc_entries.append(entry)
    parts.append(render_discarded_footnotes(footnotes))

    return "".join(parts), toc_entries


def generate_toc(toc_entries: List[TocEntry]) -> str:
    # Headings carry their own anchors; the container does not list them (yet).
    LOG.debug("TOC placeholder emitted for %d heading(s)", len(toc_entries))
    return TOC_PLACEHOLDER


def generate_page_divider(page_num: int) -> str:
    return (
        '\n<div style="display: flex; align-items: center; margin: 2.5em 0; gap: 1em;">\n'
        '  <div style="flex: 1; height: 1px; background: #ddd;"></div>\n'
        f'  <span style="color: #888; font-size: 0.85em;">第 {page_num} 页</span>\n'
        '  <div style="flex: 1; height: 1px; background: #ddd;"></div>\n'
        "</div>\n\n"
    )


def convert_layout(document: LayoutDocument, base_dir: Path) -> ConversionResult:
    if document.backend or document.version_name:
        LOG.debug("Layout produced by backend=%s version=%s", document.backend, document.version_name)

    inliner = ImageInliner(base_dir)
    page_contents: List[str] = []
    all_toc_entries: List[TocEntry] = []

    total = len(document.pdf_info)
    for number, page in enumerate(document.pdf_info, start=1):
        fragment, toc_entries = render_page(page, inliner)
        page_contents.append(fragment)
        all_toc_entries.extend(toc_entries)
        _log_verbose_progress("Rendering pages", number, total, detail=f"page_idx={page.page_idx}")

    parts: List[str] = [DOCUMENT_STYLE, generate_toc(all_toc_entries), SECTION_RULE]
    for number, content in enumerate(page_contents, start=1):
        parts.append(content)
        parts.append(generate_page_divider(number))
    parts.append(DOCUMENT_FOOTER)

    return ConversionResult(
        markdown="".join(parts),
        page_count=total,
        toc_entries=all_toc_entries,
        images_inlined=inliner.inlined,
        images_missing=inliner.missing,
    )


def convert_layout_to_markdown(document: LayoutDocument, base_dir: Path) -> str:
    return convert_layout(document, base_dir).markdown


def log_conversion_summary(result: ConversionResult) -> None:
    LOG.info(
        "Converted %d page(s): %d heading(s), %d image(s) inlined, %d image(s) missing",
        result.page_count,
        len(result.toc_entries),
        result.images_inlined,
        result.images_missing,
    )
    for entry in result.toc_entries:
        LOG.debug("Heading L%d p%d #%s: %s", entry.level, entry.page, entry.anchor_id, entry.title)


def write_markdown(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="\n")
