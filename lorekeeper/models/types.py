from typing import List, Optional
from pydantic import BaseModel, Field


class CampaignCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    setting: Optional[str] = None


class CampaignRename(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    setting: Optional[str] = None


class DocumentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    content: str = ""


class DocumentSave(BaseModel):
    content: str


class DocumentRename(BaseModel):
    title: str = Field(min_length=1, max_length=255)


class SaveResponse(BaseModel):
    success: bool = True
    id: int
    version: int


class RestoreResponse(BaseModel):
    id: int
    document_id: int
    version: int
    content: Optional[str] = None


class AcceptedResponse(BaseModel):
    status: str = "accepted"
    source_id: int
    uri: str
    queued: bool


class ChatRequest(BaseModel):
    campaign_id: int
    message: str = Field(min_length=1)
    document_id: Optional[int] = None
    document_content: Optional[str] = None
    k: Optional[int] = Field(default=None, ge=1, le=50)


class ChatResponse(BaseModel):
    response: str
    excerpts: List[str]
    cached: bool


class CanonizeRequest(BaseModel):
    selection: str = Field(min_length=1)
    full_response: str = ""
    document_content: str = ""


class CanonizeResponse(BaseModel):
    updated_content: str


class ExportRequest(BaseModel):
    markdown: str = ""
    filename: str = "export"
