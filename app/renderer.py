"""Writes the HTML/PDF pair for a document under the uploads directory."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import app.config as cfg
from app.pdf import html_to_pdf

logger = logging.getLogger(__name__)

UPLOADS_URL_PREFIX = "/uploads"


class RenderError(Exception):
    pass


@dataclass
class RenderedFiles:
    html_path: str  # URL path, e.g. /uploads/<id>.html
    pdf_path: str


class DocumentRenderer:
    """Rendering collaborator: ``render`` and ``rerender`` always target the same path pair."""

    def __init__(self, uploads_dir: Optional[str] = None, settings: Optional[cfg.Settings] = None) -> None:
        self.settings = settings or cfg.settings
        self.uploads_dir = uploads_dir or self.settings.UPLOADS_DIR

    def _file(self, name: str) -> str:
        return os.path.join(self.uploads_dir, name)

    def paths_for(self, document_id: str) -> RenderedFiles:
        return RenderedFiles(
            html_path=f"{UPLOADS_URL_PREFIX}/{document_id}.html",
            pdf_path=f"{UPLOADS_URL_PREFIX}/{document_id}.pdf",
        )

    def _pdf_bytes(self, document_id: str, html: str, title: str) -> bytes:
        try:
            return html_to_pdf(html, title=title, footer=f"{self.settings.COMPANY_NAME} | {title}")
        except Exception as exc:
            logger.exception("PDF rendering failed for document %s", document_id, extra={"document_id": document_id})
            raise RenderError(str(exc)) from exc

    def _publish(self, document_id: str, files: Dict[str, bytes]) -> None:
        """Write every file under a temporary name, then move them all into place.

        Nothing under the final names changes unless every write succeeded.
        """
        os.makedirs(self.uploads_dir, exist_ok=True)
        staged: List[Tuple[str, str]] = []
        try:
            for name, payload in files.items():
                fd, tmp = tempfile.mkstemp(prefix=f".{name}.", dir=self.uploads_dir)
                staged.append((tmp, self._file(name)))
                with os.fdopen(fd, "wb") as fh:
                    fh.write(payload)
            for tmp, final in staged:
                os.replace(tmp, final)
        except OSError as exc:
            for tmp, _ in staged:
                if os.path.exists(tmp):
                    os.remove(tmp)
            logger.exception("Could not write files for document %s", document_id, extra={"document_id": document_id})
            raise RenderError(str(exc)) from exc

    def write_pdf(self, document_id: str, html: str, title: str = "") -> str:
        pdf = self._pdf_bytes(document_id, html, title)
        self._publish(document_id, {f"{document_id}.pdf": pdf})
        return self.paths_for(document_id).pdf_path

    def render(self, document_id: str, html: str, title: str = "") -> RenderedFiles:
        pdf = self._pdf_bytes(document_id, html, title)
        self._publish(document_id, {f"{document_id}.html": html.encode("utf-8"), f"{document_id}.pdf": pdf})
        logger.info("Rendered document %s", document_id, extra={"document_id": document_id})
        return self.paths_for(document_id)

    def rerender(self, document_id: str, html: str, title: str = "") -> RenderedFiles:
        return self.render(document_id, html, title)

    def remove(self, document_id: str) -> None:
        for ext in ("html", "pdf"):
            path = self._file(f"{document_id}.{ext}")
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError:
                logger.warning("Could not remove %s", path)
