from .assembler import ExportAssembler, ExportEntry, ExportModel, ExportResult
from .renderer import PdfExportRenderer

__all__ = [
    "ExportAssembler",
    "ExportEntry",
    "ExportModel",
    "ExportResult",
    "PdfExportRenderer",
]
