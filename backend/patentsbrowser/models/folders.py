"""PatentsBrowser Saved-Patent Folder Models

Folder (custom patent list) -> workfiles -> patent IDs.
A folder may point at a parent folder, forming a tree per user.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, timezone
from enum import Enum
import uuid


class FolderSource(str, Enum):
    """How a folder came to exist"""
    CUSTOM_SEARCH = "customSearch"
    FOLDER_NAME = "folderName"
    IMPORTED_LIST = "importedList"


class WorkFile(BaseModel):
    workfile_id: str = Field(default_factory=lambda: f"WF-{uuid.uuid4().hex[:10].upper()}")
    name: str
    patent_ids: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CustomPatentList(BaseModel):
    folder_id: str = Field(default_factory=lambda: f"FLD-{uuid.uuid4().hex[:10].upper()}")
    user_id: str
    name: str
    parent_folder_id: Optional[str] = None
    patent_ids: List[str] = Field(default_factory=list)
    work_files: List[WorkFile] = Field(default_factory=list)
    source: FolderSource = FolderSource.CUSTOM_SEARCH
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore", "use_enum_values": True}


class SavedPatent(BaseModel):
    user_id: str
    patent_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PatentReadStatus(BaseModel):
    """One row per (user, patent) the user has opened"""
    user_id: str
    patent_id: str
    read_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
