from __future__ import annotations

import re
from io import BytesIO
from typing import List, Tuple
from xml.sax.saxutils import escape

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PageElement, PreformattedString, Tag
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

HEADER_FILL = colors.HexColor("#c41e3a")

_SKIP_TAGS = {"head", "style", "script", "title"}
_HEADINGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 4, "h6": 4}
_CONTAINERS = {"html", "body", "p", "div", "section", "article", "main", "header", "footer", "blockquote"}
_INLINE_MARKUP = {"strong": "b", "b": "b", "em": "i", "i": "i"}
_BLOCK_TAGS = _CONTAINERS | set(_HEADINGS) | {"ul", "ol", "li", "table"}
_WS = re.compile(r"\s+")

Block = Tuple  # ("para", text) | ("heading", text, level) | ("li", text, marker) | ("table", rows)


def _clean(markup: str) -> str:
    return _WS.sub(" ", markup).strip()


def _has_text(markup: str) -> bool:
    return bool(re.sub(r"<[^>]+>", "", markup).strip())


def _markup(node: PageElement) -> str:
    """ReportLab paragraph markup for one node of the parsed tree.

    Only <b>, <i> and <br/> survive; every other tag is flattened to its text.
    The markup is produced from the tree BeautifulSoup already repaired, so
    crossed or unclosed inline tags always come out balanced.
    """
    if isinstance(node, PreformattedString):  # comments, doctype, cdata
        return ""
    if isinstance(node, NavigableString):
        return escape(str(node))
    if node.name in _SKIP_TAGS:
        return ""
    if node.name == "br":
        return "<br/>"
    inner = _inline(node)
    if node.name in _INLINE_MARKUP and _has_text(inner):
        tag = _INLINE_MARKUP[node.name]
        return f"<{tag}>{inner}</{tag}>"
    if node.name in _BLOCK_TAGS:
        return inner + " "
    return inner


def _inline(node: Tag, exclude: Tuple[str, ...] = ()) -> str:
    return "".join(
        _markup(child) for child in node.children if not (isinstance(child, Tag) and child.name in exclude)
    )


def _table_rows(table: Tag) -> List[Tuple[bool, List[str]]]:
    rows = []
    for tr in table.find_all("tr"):
        cells = tr.find_all(["td", "th"], recursive=False)
        if cells:
            rows.append((any(c.name == "th" for c in cells), [_clean(_inline(c)) for c in cells]))
    return rows


class _BlockWalker:
    """Collects paragraph, heading, list and table blocks from a parsed document."""

    def __init__(self) -> None:
        self.blocks: List[Block] = []
        self._pending: List[str] = []

    def flush(self) -> None:
        text = _clean("".join(self._pending))
        self._pending = []
        if _has_text(text):
            self.blocks.append(("para", text))

    def _list(self, node: Tag) -> None:
        ordered = node.name == "ol"
        for n, li in enumerate(node.find_all("li", recursive=False), 1):
            text = _clean(_inline(li, exclude=("ul", "ol")))
            if _has_text(text):
                self.blocks.append(("li", text, f"{n}." if ordered else "•"))
            for nested in li.find_all(["ul", "ol"], recursive=False):
                self._list(nested)

    def walk(self, node: Tag) -> None:
        for child in node.children:
            name = child.name if isinstance(child, Tag) else None
            if name in _SKIP_TAGS:
                continue
            if name not in _BLOCK_TAGS:
                self._pending.append(_markup(child))
                continue
            self.flush()
            if name in _HEADINGS:
                text = _clean(_inline(child))
                if _has_text(text):
                    self.blocks.append(("heading", text, _HEADINGS[name]))
            elif name in ("ul", "ol"):
                self._list(child)
            elif name == "li":
                # stray <li> outside a list
                text = _clean(_inline(child))
                if _has_text(text):
                    self.blocks.append(("li", text, "•"))
            elif name == "table":
                rows = _table_rows(child)
                if rows:
                    self.blocks.append(("table", rows))
            else:
                self.walk(child)
                self.flush()


def html_blocks(html: str) -> List[Block]:
    walker = _BlockWalker()
    walker.walk(BeautifulSoup(html or "", "html.parser"))
    walker.flush()
    return walker.blocks


def _table(rows: List[Tuple[bool, List[str]]], styles) -> Table:
    cell = ParagraphStyle("cell", parent=styles["BodyText"], fontSize=8, leading=10, alignment=1)
    head = ParagraphStyle("head", parent=cell, textColor=colors.white, fontName="Helvetica-Bold")
    width = max(len(r) for _, r in rows)
    data = []
    for is_header, cells in rows:
        style = head if is_header else cell
        padded = cells + [""] * (width - len(cells))
        data.append([Paragraph(c, style) for c in padded])
    header_rows = 0
    for is_header, _ in rows:
        if not is_header:
            break
        header_rows += 1
    table = Table(data, repeatRows=header_rows)
    commands = [
        ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ]
    if header_rows:
        commands.append(("BACKGROUND", (0, 0), (-1, header_rows - 1), HEADER_FILL))
    table.setStyle(TableStyle(commands))
    return table


def html_to_pdf(html: str, *, title: str = "", footer: str = "") -> bytes:
    """
    Lay out an HTML document as an A4 PDF.

    Only the structure the SPH letter uses is honoured (headings, paragraphs,
    lists, tables, bold/italic); CSS is ignored. Edited HTML goes through the
    same path so a regenerated PDF always matches the stored content.
    """
    styles = getSampleStyleSheet()
    body = ParagraphStyle("body", parent=styles["BodyText"], fontSize=10, leading=13)
    item = ParagraphStyle("item", parent=body, leftIndent=8 * mm, firstLineIndent=-5 * mm)

    story: List = []
    for block in html_blocks(html):
        kind = block[0]
        if kind == "heading":
            story.append(Paragraph(block[1], styles[f"Heading{block[2]}"]))
        elif kind == "li":
            story.append(Paragraph(f"{escape(block[2])} {block[1]}", item))
        elif kind == "table":
            story.append(Spacer(1, 3 * mm))
            story.append(_table(block[1], styles))
            story.append(Spacer(1, 3 * mm))
        else:
            story.append(Paragraph(block[1], body))
    if not story:
        story.append(Spacer(1, 1))

    def _footer(c, doc):
        if not footer:
            return
        c.saveState()
        c.setFont("Helvetica", 8)
        c.setFillColor(colors.grey)
        c.drawString(20 * mm, 10 * mm, footer[:140])
        c.drawRightString(190 * mm, 10 * mm, str(doc.page))
        c.restoreState()

    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title=title,
    )
    doc.build(story, onFirstPage=_footer, onLaterPages=_footer)
    return buf.getvalue()
