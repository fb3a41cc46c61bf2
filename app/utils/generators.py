from docx import Document
from docx.enum.text import WD_BREAK
from docx.shared import Pt, Inches
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas
from io import BytesIO
from typing import List, Sequence, Union

from app.utils.parsers import parse_data_uri

TEXT_PDF_MARGIN = 40  # points
TEXT_PDF_FONT = "Helvetica"
TEXT_PDF_FONT_SIZE = 11


def create_images_pdf(images: Sequence[str]) -> BytesIO:
    """
    One A4 page per image, in order. Each image is scaled to fit the page
    while keeping its aspect ratio, and centred.
    """
    file_stream = BytesIO()
    pdf = canvas.Canvas(file_stream, pagesize=A4)
    page_width, page_height = A4

    for uri in images:
        part = parse_data_uri(uri, accepted=None)
        reader = ImageReader(BytesIO(part.data))
        img_width, img_height = reader.getSize()
        ratio = min(page_width / img_width, page_height / img_height)
        width, height = img_width * ratio, img_height * ratio
        pdf.drawImage(
            reader,
            (page_width - width) / 2,
            (page_height - height) / 2,
            width=width,
            height=height,
        )
        pdf.showPage()

    pdf.save()
    file_stream.seek(0)
    return file_stream


def create_text_pdf(content: str) -> BytesIO:
    file_stream = BytesIO()
    pdf = canvas.Canvas(file_stream, pagesize=A4)
    page_width, page_height = A4
    usable_width = page_width - 2 * TEXT_PDF_MARGIN
    leading = TEXT_PDF_FONT_SIZE * 1.3

    pdf.setFont(TEXT_PDF_FONT, TEXT_PDF_FONT_SIZE)
    y = page_height - TEXT_PDF_MARGIN
    for paragraph in content.split("\n"):
        # Blank lines still advance the cursor
        lines = simpleSplit(paragraph, TEXT_PDF_FONT, TEXT_PDF_FONT_SIZE, usable_width) or [""]
        for line in lines:
            if y < TEXT_PDF_MARGIN:
                pdf.showPage()
                pdf.setFont(TEXT_PDF_FONT, TEXT_PDF_FONT_SIZE)
                y = page_height - TEXT_PDF_MARGIN
            pdf.drawString(TEXT_PDF_MARGIN, y, line)
            y -= leading

    pdf.showPage()
    pdf.save()
    file_stream.seek(0)
    return file_stream


def create_docx(content: Union[str, List[str]]) -> BytesIO:
    """Plain-text DOCX. A list is treated as one string per page, separated by page breaks."""
    pages = [content] if isinstance(content, str) else list(content)
    doc = Document()

    for section in doc.sections:
        section.top_margin = Inches(0.5)
        section.bottom_margin = Inches(0.5)
        section.left_margin = Inches(0.75)
        section.right_margin = Inches(0.75)

    for index, page in enumerate(pages):
        for line in page.split('\n'):
            p = doc.add_paragraph(line.rstrip())
            p.paragraph_format.space_after = Pt(2)
        if index < len(pages) - 1:
            doc.add_paragraph().add_run().add_break(WD_BREAK.PAGE)

    file_stream = BytesIO()
    doc.save(file_stream)
    file_stream.seek(0)
    return file_stream
