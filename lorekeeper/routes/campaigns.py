from fastapi import APIRouter, File, UploadFile, status
from fastapi.concurrency import run_in_threadpool
import logging

from lorekeeper.db import persistence
from lorekeeper.models.types import AcceptedResponse, CampaignCreate, CampaignRename, DocumentCreate
from lorekeeper.services import file_store
from lorekeeper.services.context_cache import get_cache_manager
from lorekeeper.services.embedding_store import chunk_counts, get_ingestion_queue
from lorekeeper.services.lifecycle import delete_campaign
from lorekeeper.services.uploads import prepare_upload

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/campaigns")
def list_campaigns():
    return persistence.list_campaigns()


@router.post("/campaigns")
def create_campaign(req: CampaignCreate):
    return persistence.create_campaign(req.name, req.setting)


@router.put("/campaigns/{campaign_id}/rename")
def rename_campaign(campaign_id: int, req: CampaignRename):
    persistence.rename_campaign(campaign_id, req.name, req.setting)
    return {"success": True}


@router.delete("/campaigns/{campaign_id}")
async def remove_campaign(campaign_id: int):
    result = await run_in_threadpool(delete_campaign, campaign_id)
    if result.get("deleted"):
        await get_cache_manager().invalidate_campaign(campaign_id)
    return result


@router.get("/campaigns/{campaign_id}/documents")
def list_documents(campaign_id: int):
    return persistence.list_documents(campaign_id)


@router.post("/campaigns/{campaign_id}/documents")
def create_document(campaign_id: int, req: DocumentCreate):
    doc = persistence.create_document(campaign_id, req.title, req.content)
    return {"id": doc["id"]}


@router.get("/campaigns/{campaign_id}/sources")
def list_sources(campaign_id: int):
    sources = persistence.list_sources(campaign_id)
    counts = chunk_counts(campaign_id)
    for src in sources:
        src["chunk_count"] = counts.get(src["id"], 0)
    return sources


@router.post("/campaigns/{campaign_id}/upload", response_model=AcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_source(campaign_id: int, file: UploadFile = File(...)):
    # fail before the provider upload so a missing campaign leaves no remote file
    await run_in_threadpool(persistence.get_campaign, campaign_id)
    data = await file.read()
    prepared = await run_in_threadpool(prepare_upload, data, file.filename or "upload", file.content_type or "")
    try:
        src = await run_in_threadpool(
            persistence.create_source,
            campaign_id,
            name=file.filename or "upload",
            file_path=prepared.path,
            text=prepared.text,
            file_uri=prepared.uri,
            mime_type=prepared.mime_type,
        )
    except Exception:
        file_store.remove_file(prepared.path)
        raise
    queued = get_ingestion_queue().submit(src["id"])
    logger.info("upload: campaign=%s source=%s queued=%s", campaign_id, src["id"], queued)
    return AcceptedResponse(source_id=src["id"], uri=prepared.uri, queued=queued)


@router.post(
    "/campaigns/{campaign_id}/assign-source/{global_id}",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def assign_source(campaign_id: int, global_id: int):
    src = await run_in_threadpool(persistence.assign_global_source, campaign_id, global_id)
    queued = get_ingestion_queue().submit(src["id"])
    return AcceptedResponse(source_id=src["id"], uri=src["file_uri"], queued=queued)
