from __future__ import annotations

import asyncio

import fitz  # PyMuPDF

from ..pipeline.errors import UpstreamError

TEXT_TYPES = {"txt", "text", "md", "markdown", "csv", "json"}


class DocumentExtractor:
    """Plain text out of uploaded files (PDF via PyMuPDF, text formats decoded)."""

    def extract_sync(self, data: bytes, kind: str) -> str:
        kind = kind.lower().lstrip(".")
        if kind in {"pdf", "application/pdf"}:
            try:
                with fitz.open(stream=data, filetype="pdf") as doc:
                    pages = [page.get_text() for page in doc]
            except (RuntimeError, ValueError) as e:
                raise UpstreamError("documents", f"unreadable PDF: {e}") from e
            return "\n".join(p.strip() for p in pages if p.strip())
        if kind in TEXT_TYPES or kind.startswith("text/"):
            return data.decode("utf-8", errors="replace").strip()
        raise UpstreamError("documents", f"unsupported document type: {kind}")

    async def extract(self, data: bytes, kind: str) -> str:
        return await asyncio.to_thread(self.extract_sync, data, kind)
