from fastapi import APIRouter, File, UploadFile
from fastapi.concurrency import run_in_threadpool
import logging

from lorekeeper.db import persistence
from lorekeeper.services import file_store
from lorekeeper.services.context_cache import get_cache_manager
from lorekeeper.services.lifecycle import delete_global_source, delete_source
from lorekeeper.services.uploads import prepare_upload

router = APIRouter()
logger = logging.getLogger(__name__)


@router.delete("/sources/{source_id}")
async def remove_source(source_id: int):
    out = await run_in_threadpool(delete_source, source_id)
    # The campaign's source set changed; its cache key no longer matches anyway
    await get_cache_manager().invalidate_campaign(out["campaign_id"])
    return {"success": True}


@router.get("/global-sources")
def list_global_sources():
    return persistence.list_global_sources()


@router.post("/global-sources/upload")
async def upload_global_source(file: UploadFile = File(...)):
    data = await file.read()
    prepared = await run_in_threadpool(prepare_upload, data, file.filename or "upload", file.content_type or "")
    try:
        g = await run_in_threadpool(
            persistence.create_global_source,
            name=file.filename or "upload",
            file_path=prepared.path,
            text=prepared.text,
            file_uri=prepared.uri,
            mime_type=prepared.mime_type,
        )
    except Exception:
        file_store.remove_file(prepared.path)
        raise
    logger.info("upload: global source %s stored", g["id"])
    return {"success": True, "id": g["id"], "uri": prepared.uri}


@router.delete("/global-sources/{global_id}")
async def remove_global_source(global_id: int):
    out = await run_in_threadpool(delete_global_source, global_id)
    manager = get_cache_manager()
    for cid in out["campaign_ids"]:
        await manager.invalidate_campaign(cid)
    return {"success": True, "copies": out["copies"]}
