"""Document export (PDF / DOCX / plain text) and text extraction from uploads."""
import io
from datetime import datetime, timezone
from xml.sax.saxutils import escape

from docx import Document as DocxDocument
from docx.shared import Pt
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer

from errors import BadRequestError
from models.documents import Document

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _paragraphs(content: str):
    # Blank lines separate paragraphs
    for block in content.split("\n\n"):
        block = block.strip()
        if block:
            yield block


def _generated_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")


def _styles():
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("DocTitle", parent=base["Title"], fontSize=18, spaceAfter=12),
        "body": ParagraphStyle("DocBody", parent=base["BodyText"], fontSize=11, leading=15),
        "footer": ParagraphStyle("DocFooter", parent=base["Normal"], fontSize=8, textColor=colors.HexColor("#666666")),
    }


def render_pdf(document: Document) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=50,
        leftMargin=50,
        topMargin=50,
        bottomMargin=50,
        title=document.title,
    )
    styles = _styles()

    elements = [Paragraph(escape(document.title), styles["title"])]
    for block in _paragraphs(document.content):
        elements.append(Paragraph(escape(block).replace("\n", "<br/>"), styles["body"]))
        elements.append(Spacer(1, 8))

    elements.append(Spacer(1, 24))
    elements.append(Paragraph(f"Generated {_generated_stamp()}", styles["footer"]))

    doc.build(elements)
    return buffer.getvalue()


def render_docx(document: Document) -> bytes:
    doc = DocxDocument()
    normal = doc.styles["Normal"]
    normal.font.name = "Calibri"
    normal.font.size = Pt(11)

    doc.add_heading(document.title, level=1)
    for block in _paragraphs(document.content):
        para = doc.add_paragraph()
        lines = block.split("\n")
        for i, line in enumerate(lines):
            run = para.add_run(line)
            if i < len(lines) - 1:
                run.add_break()

    footer = doc.add_paragraph(f"Generated {_generated_stamp()}")
    footer.runs[0].font.size = Pt(8)

    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def render_text(document: Document) -> bytes:
    return document.content.encode("utf-8")


def extract_text(filename: str, content_type: str, data: bytes) -> str:
    """Plain text from an uploaded .txt, .md or .docx file."""
    name = (filename or "").lower()
    if name.endswith(".docx") or content_type == DOCX_MIME:
        try:
            doc = DocxDocument(io.BytesIO(data))
        except Exception:
            raise BadRequestError("Could not read DOCX file")
        return "\n\n".join(p.text for p in doc.paragraphs if p.text.strip())
    if name.endswith((".txt", ".md")) or (content_type or "").startswith("text/"):
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            raise BadRequestError("Text files must be UTF-8 encoded")
    raise BadRequestError("Only TXT, MD and DOCX files can be analyzed")


def safe_filename(title: str) -> str:
    cleaned = "".join(c if c.isalnum() or c in "-_ " else "_" for c in title).strip()
    return cleaned.replace(" ", "_") or "document"
