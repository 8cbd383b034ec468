# Overview: Document renderer collaborator; renders quotes/invoices after their transition commits.

from __future__ import annotations

from flask import current_app

from ..extensions import db


class NullDocumentRenderer:
    """Renderer used when no PDF backend is configured: produces no artifact."""

    def render(self, kind: str, document: dict) -> str | None:
        return None


def get_renderer():
    renderer = current_app.config.get("DOCUMENT_RENDERER")
    return renderer if renderer is not None else NullDocumentRenderer()


def render_and_attach(kind: str, model_cls, document_id: int) -> str | None:
    """
    Render a committed document and store the returned artifact path.

    Runs after the state transition has committed. A renderer failure is
    logged and swallowed: the transition stays committed, pdf_path stays unset.
    """
    document = db.session.get(model_cls, document_id)
    if document is None:
        return None

    try:
        path = get_renderer().render(kind, document.to_dict())
    except Exception:
        current_app.logger.exception("Rendering %s %s failed", kind, document_id)
        return None

    if not path:
        return None

    try:
        document.pdf_path = path
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Storing rendered path for %s %s failed", kind, document_id)
        return None
    return path
