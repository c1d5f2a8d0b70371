from fastapi import APIRouter
from fastapi.responses import Response

from lorekeeper.db import persistence
from lorekeeper.models.types import DocumentRename, DocumentSave, ExportRequest, RestoreResponse, SaveResponse
from lorekeeper.services import versions
from lorekeeper.services.docx_export import export_filename, markdown_to_docx
from lorekeeper.services.text_extractor import DOCX_MIME

router = APIRouter()


@router.get("/documents/{document_id}")
def get_document(document_id: int):
    return persistence.get_document(document_id)


@router.put("/documents/{document_id}", response_model=SaveResponse)
def save_document(document_id: int, req: DocumentSave):
    out = versions.save_document(document_id, req.content)
    return SaveResponse(id=out["id"], version=out["version"])


@router.put("/documents/{document_id}/rename")
def rename_document(document_id: int, req: DocumentRename):
    persistence.rename_document(document_id, req.title)
    return {"success": True}


@router.delete("/documents/{document_id}")
def delete_document(document_id: int):
    versions.delete_document(document_id)
    return {"success": True}


@router.get("/documents/{document_id}/history")
def document_history(document_id: int):
    return versions.list_history(document_id)


@router.get("/document_history/{history_id}", response_model=RestoreResponse)
def restore_version(history_id: int):
    # Read-only: the client decides whether to save the restored text
    return versions.restore_version(history_id)


@router.post("/export-docx")
def export_docx(req: ExportRequest):
    data = markdown_to_docx(req.markdown)
    return Response(
        content=data,
        media_type=DOCX_MIME,
        headers={"Content-Disposition": f'attachment; filename="{export_filename(req.filename)}"'},
    )
