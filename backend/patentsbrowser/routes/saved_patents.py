"""Saved patents API: saved list, folders, workfiles, file import, search history and read status."""
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field
from typing import List, Optional
from middleware import require_auth, require_active_subscription
from patentsbrowser.models.user import AuthContext
from patentsbrowser.models.folders import FolderSource
from patentsbrowser.services.folder_service import folder_service
from patentsbrowser.services.patent_extraction import extract_patent_ids, MAX_UPLOAD_BYTES
from utils.responses import success_response
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/saved-patents", tags=["saved-patents"])


class SavePatentsRequest(BaseModel):
    patent_ids: List[str] = Field(..., min_length=1)
    folder_name: Optional[str] = None


class CustomListRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    patent_ids: List[str] = Field(default_factory=list)
    source: FolderSource = FolderSource.CUSTOM_SEARCH
    workfile_name: Optional[str] = None


class SubfolderRequest(BaseModel):
    parent_folder_id: str
    name: str = Field(..., min_length=1, max_length=200)
    patent_ids: List[str] = Field(default_factory=list)
    workfile_name: Optional[str] = None


class FolderPatentsRequest(BaseModel):
    folder_id: str
    patent_ids: List[str] = Field(..., min_length=1)
    workfile_name: Optional[str] = None


class MergeWorkfilesRequest(BaseModel):
    folder_id: str
    workfile_ids: List[str] = Field(..., min_length=2)
    new_workfile_name: str = Field(..., min_length=1)


class DeletePatentRequest(BaseModel):
    folder_id: str
    patent_id: str = Field(..., min_length=1)


class HistoryRequest(BaseModel):
    patent_id: str = Field(..., min_length=1)
    source: Optional[str] = None


class MarkReadRequest(BaseModel):
    patent_id: str = Field(..., min_length=1)


class ReadStatusRequest(BaseModel):
    patent_ids: List[str]


# ============================================
# Saved patents
# ============================================

@router.post("/save")
async def save_patents(data: SavePatentsRequest, auth: AuthContext = Depends(require_auth)):
    result = await folder_service.save_patents(auth.user_id, data.patent_ids, data.folder_name)
    return success_response("Patents saved successfully", result)


@router.get("/list")
async def list_saved_patents(auth: AuthContext = Depends(require_auth)):
    saved = await folder_service.list_saved(auth.user_id)
    return success_response("Saved patents fetched", saved)


# ============================================
# Folders and workfiles
# ============================================

@router.post("/custom-list", status_code=201)
async def create_custom_list(data: CustomListRequest, auth: AuthContext = Depends(require_auth)):
    folder = await folder_service.create_folder(
        auth.user_id,
        data.name,
        patent_ids=data.patent_ids,
        source=data.source.value,
        workfile_name=data.workfile_name,
    )
    return success_response("Folder created successfully", folder, status_code=201)


@router.get("/custom-list")
async def get_custom_lists(auth: AuthContext = Depends(require_auth)):
    folders = await folder_service.get_folders(auth.user_id)
    return success_response("Folders fetched", folders)


@router.get("/imported-lists")
async def get_imported_lists(auth: AuthContext = Depends(require_auth)):
    folders = await folder_service.get_imported_lists(auth.user_id)
    return success_response("Imported lists fetched", folders)


@router.post("/subfolder", status_code=201)
async def create_subfolder(data: SubfolderRequest, auth: AuthContext = Depends(require_auth)):
    folder = await folder_service.create_subfolder(
        auth.user_id,
        data.parent_folder_id,
        data.name,
        patent_ids=data.patent_ids,
        workfile_name=data.workfile_name,
    )
    return success_response("Subfolder created successfully", folder, status_code=201)


@router.post("/add-patent")
async def add_patents(data: FolderPatentsRequest, auth: AuthContext = Depends(require_auth)):
    folder = await folder_service.add_patents(auth.user_id, data.folder_id, data.patent_ids, data.workfile_name)
    return success_response("Patents added successfully", folder)


@router.post("/remove-patent")
async def remove_patents(data: FolderPatentsRequest, auth: AuthContext = Depends(require_auth)):
    folder = await folder_service.remove_patents(auth.user_id, data.folder_id, data.patent_ids, data.workfile_name)
    return success_response("Patents removed successfully", folder)


@router.post("/merge-workfiles", status_code=201)
async def merge_workfiles(data: MergeWorkfilesRequest, auth: AuthContext = Depends(require_auth)):
    workfile = await folder_service.merge_workfiles(
        auth.user_id, data.folder_id, data.workfile_ids, data.new_workfile_name
    )
    return success_response("Workfiles merged successfully", workfile, status_code=201)


@router.delete("/folders/{folder_id}")
async def delete_folder(folder_id: str, auth: AuthContext = Depends(require_auth)):
    deleted = await folder_service.delete_folder(auth.user_id, folder_id)
    return success_response("Folder deleted successfully", {"deleted_count": deleted})


@router.delete("/folders/{folder_id}/workfiles/{workfile_id}")
async def delete_workfile(folder_id: str, workfile_id: str, auth: AuthContext = Depends(require_auth)):
    await folder_service.delete_workfile(auth.user_id, folder_id, workfile_id)
    return success_response("Workfile deleted successfully")


@router.post("/delete-patent")
async def delete_patent(data: DeletePatentRequest, auth: AuthContext = Depends(require_auth)):
    folder = await folder_service.delete_patent(auth.user_id, data.folder_id, data.patent_id)
    return success_response("Patent removed from folder", folder)


# ============================================
# Bulk import
# ============================================

@router.post("/extract-from-file")
async def extract_from_file(
    file: UploadFile = File(...),
    folder_name: Optional[str] = Form(None),
    auth: AuthContext = Depends(require_active_subscription),
):
    """Extract patent IDs from an uploaded document or spreadsheet."""
    content = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File exceeds the 5MB upload limit")

    result = extract_patent_ids(file.filename, content)

    result["saved_folder"] = None
    if folder_name and result["patent_ids"]:
        folder = await folder_service.create_folder(
            auth.user_id,
            folder_name,
            patent_ids=result["patent_ids"],
            source=FolderSource.FOLDER_NAME.value,
        )
        result["saved_folder"] = {
            "folder_id": folder["folder_id"],
            "name": folder["name"],
            "patent_count": len(folder["patent_ids"]),
        }
        message = f'Patents extracted and saved to folder "{folder_name}" successfully'
    else:
        message = "Publication numbers and kind codes extracted successfully"

    return success_response(message, result)


# ============================================
# Search history
# ============================================

@router.get("/history")
async def get_history(limit: int = Query(100, ge=1, le=500), auth: AuthContext = Depends(require_auth)):
    history = await folder_service.get_history(auth.user_id, limit)
    return success_response("Search history fetched", history)


@router.post("/history")
async def add_history(data: HistoryRequest, auth: AuthContext = Depends(require_auth)):
    entry = await folder_service.add_history(auth.user_id, data.patent_id, data.source)
    return success_response("Search history updated", entry)


@router.delete("/history")
async def clear_history(patent_id: Optional[str] = Query(None), auth: AuthContext = Depends(require_auth)):
    deleted = await folder_service.clear_history(auth.user_id, patent_id)
    return success_response("Search history cleared", {"deleted_count": deleted})


# ============================================
# Read status
# ============================================

@router.post("/read-status/mark-read")
async def mark_patent_read(data: MarkReadRequest, auth: AuthContext = Depends(require_auth)):
    status = await folder_service.mark_read(auth.user_id, data.patent_id)
    return success_response("Patent marked as read", status)


@router.get("/read-status/list")
async def list_read_patents(auth: AuthContext = Depends(require_auth)):
    patent_ids = await folder_service.list_read(auth.user_id)
    return success_response("Read patents retrieved successfully", patent_ids)


@router.post("/read-status/check-status")
async def check_read_status(data: ReadStatusRequest, auth: AuthContext = Depends(require_auth)):
    statuses = await folder_service.check_read_status(auth.user_id, data.patent_ids)
    return success_response("Patent read status retrieved successfully", statuses)
