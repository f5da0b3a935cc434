from __future__ import annotations

import logging
from datetime import datetime
from io import BytesIO
from xml.sax.saxutils import escape

from bs4 import BeautifulSoup
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch, mm
from reportlab.lib.utils import ImageReader
from reportlab.platypus import (
    Image,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from ..collaborators import CaseSnapshot, CaseUserInfo
from ..references import ResolvedAsset
from .assembler import ExportEntry, ExportModel

logger = logging.getLogger(__name__)

DATE_FORMAT = "%d/%m/%Y %H:%M:%S %Z"


def _fmt(value: datetime | None) -> str:
    return value.strftime(DATE_FORMAT).strip() if value else ""


def html_to_lines(html: str) -> list[str]:
    """Flatten rich text into plain paragraphs for the PDF body."""
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    for img in soup.find_all("img"):
        img.decompose()
    text = soup.get_text("\n")
    return [line.strip() for line in text.splitlines() if line.strip()]


class PdfExportRenderer:
    """Renders an ExportModel into a single PDF using reportlab."""

    def __init__(self, pagesize=A4):
        self.pagesize = pagesize
        # SimpleDocTemplate keeps one-inch margins
        self.max_image_width = pagesize[0] - 2 * inch
        self.max_image_height = 120 * mm
        base = getSampleStyleSheet()
        self.title = base["Title"]
        self.heading = base["Heading2"]
        self.subheading = base["Heading4"]
        self.body = base["BodyText"]
        self.small = ParagraphStyle("Small", parent=base["BodyText"], fontSize=8,
                                    textColor=colors.grey)

    def _user_table(self, users: list[CaseUserInfo]) -> Table:
        rows = [["Name", "Job title", "Organization", "Email"]]
        rows += [[u.display_name, u.job_title, u.organization, u.email] for u in users]
        table = Table(rows, repeatRows=1)
        table.setStyle(TableStyle([
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
            ("FONTSIZE", (0, 0), (-1, -1), 8),
        ]))
        return table

    def _image(self, asset: ResolvedAsset) -> Image | None:
        """Embed the verified bytes, scaled down to fit the frame."""
        if asset.body is None:
            return None
        data = asset.body.read_bytes()
        try:
            width, height = ImageReader(BytesIO(data)).getSize()
        except (OSError, ValueError) as exc:
            logger.warning("Image %s could not be embedded: %s", asset.name, exc)
            return None
        scale = min(1.0, self.max_image_width / width, self.max_image_height / height)
        return Image(BytesIO(data), width=width * scale, height=height * scale)

    def _entry(self, entry: ExportEntry) -> list:
        flow: list = [Paragraph(escape(entry.title or entry.content_id), self.subheading)]
        meta = []
        if entry.created:
            meta.append(f"Created: {_fmt(entry.created)}")
        if entry.creator:
            meta.append(f"Author: {entry.creator.name_job}")
        if meta:
            flow.append(Paragraph(escape(" | ".join(meta)), self.small))
        for line in html_to_lines(entry.content):
            flow.append(Paragraph(escape(line), self.body))
        for asset in entry.assets:
            image = self._image(asset)
            if image is not None:
                flow.append(image)
            flow.append(Paragraph(
                f'Image: <link href="{escape(asset.url)}">{escape(asset.name)}</link>',
                self.body,
            ))
            flow.append(Paragraph(
                escape(f"MD5 {asset.record.md5_hash}  SHA256 {asset.record.sha256_hash}"
                       f"  version {asset.record.version_id}"),
                self.small,
            ))
        if entry.attachment_url:
            flow.append(Paragraph(
                f'File: <link href="{escape(entry.attachment_url)}">'
                f"{escape(entry.title)}</link>",
                self.body,
            ))
        flow.append(Paragraph(
            escape(f"MD5 {entry.record.md5_hash}  SHA256 {entry.record.sha256_hash}"
                   f"  version {entry.record.version_id}"),
            self.small,
        ))
        flow.append(Spacer(1, 4 * mm))
        return flow

    def _section(self, title: str, entries: list[ExportEntry]) -> list:
        if not entries:
            return []
        flow: list = [Paragraph(escape(title), self.heading)]
        for entry in entries:
            flow.extend(self._entry(entry))
        return flow

    def render(self, document: ExportModel, case: CaseSnapshot) -> bytes:
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=self.pagesize,
            title=f"Lighthouse Notes Export {case.display_name}",
            author=document.requester.display_name,
        )

        story: list = [
            Paragraph(escape(case.display_name), self.title),
            Paragraph(escape(f"Status: {case.status}"), self.body),
            Paragraph(escape(f"Exported by: {document.requester.name_job}"), self.body),
            Paragraph(escape(f"Lead investigator: {document.lead_investigator.name_job}"),
                      self.body),
            Paragraph(escape(f"Generated: {_fmt(document.generated_at)}"), self.body),
            Spacer(1, 6 * mm),
            Paragraph("Case users", self.heading),
            self._user_table(document.users),
        ]

        if document.exhibits:
            story.append(Paragraph("Exhibits", self.heading))
            for exhibit in document.exhibits:
                story.append(Paragraph(
                    escape(f"{exhibit.reference}: {exhibit.description}"
                           f" (seized {_fmt(exhibit.seized_at)} at {exhibit.where_seized}"
                           f" by {exhibit.seized_by})"),
                    self.body,
                ))

        story.append(PageBreak())
        story += self._section("Contemporaneous notes", document.notes)
        story += self._section("Tabs", document.tabs)
        story += self._section("Shared contemporaneous notes", document.shared_notes)
        story += self._section("Shared tabs", document.shared_tabs)
        story += self._section(
            "Exhibit files",
            [e for e in document.entries if not e.kind.is_document],
        )

        doc.build(story)
        return buffer.getvalue()
