"""Folder Service - saved patents, custom lists (folders) and workfiles.

A folder belongs to one user and may have a parent folder. Each folder holds
a flat patent_ids list plus named workfiles. Patent IDs are standardized on
the way in and never repeat inside one list.
"""
from database import database
from patentsbrowser.services.errors import ServiceError
from pymongo import UpdateOne
from patentsbrowser.models.folders import CustomPatentList, WorkFile, FolderSource, SavedPatent, PatentReadStatus
from utils.patent_numbers import normalize_patent_ids, standardize_patent_number
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
import logging

logger = logging.getLogger(__name__)


class FolderError(ServiceError):
    pass


def merge_patent_lists(*lists: List[str]) -> List[str]:
    """Ordered union: first occurrence wins."""
    merged: List[str] = []
    seen = set()
    for patent_ids in lists:
        for patent_id in patent_ids:
            if patent_id not in seen:
                seen.add(patent_id)
                merged.append(patent_id)
    return merged


def _find_workfile(folder: Dict[str, Any], *, name: Optional[str] = None, workfile_id: Optional[str] = None):
    for workfile in folder.get("work_files", []):
        if workfile_id and workfile.get("workfile_id") == workfile_id:
            return workfile
        if name and workfile.get("name") == name:
            return workfile
    return None


class FolderService:
    def __init__(self):
        self.db = None

    async def _get_db(self):
        if self.db is None:
            self.db = database.get_db()
        return self.db

    async def _owned_folder(self, user_id: str, folder_id: str) -> Dict[str, Any]:
        db = await self._get_db()
        folder = await db.custom_patent_lists.find_one(
            {"folder_id": folder_id, "user_id": user_id}, {"_id": 0}
        )
        if not folder:
            raise FolderError("Folder not found", status_code=404)
        return folder

    async def _save_contents(self, folder: Dict[str, Any]) -> None:
        db = await self._get_db()
        await db.custom_patent_lists.update_one(
            {"folder_id": folder["folder_id"]},
            {"$set": {
                "patent_ids": folder.get("patent_ids", []),
                "work_files": folder.get("work_files", []),
                "timestamp": datetime.now(timezone.utc),
            }}
        )

    # ========================================================================
    # Folders
    # ========================================================================

    async def create_folder(
        self,
        user_id: str,
        name: str,
        patent_ids: Optional[List[str]] = None,
        source: str = FolderSource.CUSTOM_SEARCH.value,
        workfile_name: Optional[str] = None,
        parent_folder_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise FolderError("Folder name is required")

        ids = normalize_patent_ids(patent_ids or [])
        work_files = [WorkFile(name=workfile_name.strip(), patent_ids=ids)] if workfile_name else []
        folder = CustomPatentList(
            user_id=user_id,
            name=name,
            parent_folder_id=parent_folder_id,
            patent_ids=ids,
            work_files=work_files,
            source=FolderSource(source),
        )
        doc = folder.model_dump()
        db = await self._get_db()
        await db.custom_patent_lists.insert_one({**doc})
        logger.info(f"Folder {folder.folder_id} created for {user_id} with {len(ids)} patents")
        return doc

    async def create_subfolder(
        self,
        user_id: str,
        parent_folder_id: str,
        name: str,
        patent_ids: Optional[List[str]] = None,
        workfile_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            parent = await self._owned_folder(user_id, parent_folder_id)
        except FolderError:
            raise FolderError("Parent folder not found", status_code=404)
        return await self.create_folder(
            user_id,
            name,
            patent_ids=patent_ids,
            source=parent.get("source", FolderSource.CUSTOM_SEARCH.value),
            workfile_name=workfile_name,
            parent_folder_id=parent_folder_id,
        )

    async def _list(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        db = await self._get_db()
        folders = await db.custom_patent_lists.find(query, {"_id": 0}).sort("timestamp", -1).to_list(1000)

        by_id = {f["folder_id"]: {**f, "subfolders": []} for f in folders}
        roots = []
        for folder in by_id.values():
            parent = by_id.get(folder.get("parent_folder_id"))
            if parent:
                parent["subfolders"].append(folder)
            else:
                roots.append(folder)
        return roots

    async def get_folders(self, user_id: str) -> List[Dict[str, Any]]:
        """Folders as a tree, excluding imported lists."""
        return await self._list({"user_id": user_id, "source": {"$ne": FolderSource.IMPORTED_LIST.value}})

    async def get_imported_lists(self, user_id: str) -> List[Dict[str, Any]]:
        return await self._list({"user_id": user_id, "source": FolderSource.IMPORTED_LIST.value})

    async def delete_folder(self, user_id: str, folder_id: str) -> int:
        """Delete a folder and every folder beneath it."""
        await self._owned_folder(user_id, folder_id)
        db = await self._get_db()

        doomed = [folder_id]
        frontier = [folder_id]
        while frontier:
            children = await db.custom_patent_lists.find(
                {"user_id": user_id, "parent_folder_id": {"$in": frontier}},
                {"_id": 0, "folder_id": 1}
            ).to_list(1000)
            frontier = [c["folder_id"] for c in children if c["folder_id"] not in doomed]
            doomed.extend(frontier)

        result = await db.custom_patent_lists.delete_many({"user_id": user_id, "folder_id": {"$in": doomed}})
        logger.info(f"Deleted {result.deleted_count} folder(s) under {folder_id} for {user_id}")
        return result.deleted_count

    # ========================================================================
    # Patents inside folders and workfiles
    # ========================================================================

    async def add_patents(
        self,
        user_id: str,
        folder_id: str,
        patent_ids: List[str],
        workfile_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Add patents to a folder, or to a named workfile (created when missing)."""
        ids = normalize_patent_ids(patent_ids)
        if not ids:
            raise FolderError("At least one patent ID is required")

        folder = await self._owned_folder(user_id, folder_id)
        if workfile_name:
            workfile = _find_workfile(folder, name=workfile_name)
            if workfile:
                workfile["patent_ids"] = merge_patent_lists(workfile.get("patent_ids", []), ids)
                workfile["timestamp"] = datetime.now(timezone.utc)
            else:
                folder.setdefault("work_files", []).append(
                    WorkFile(name=workfile_name, patent_ids=ids).model_dump()
                )
        else:
            folder["patent_ids"] = merge_patent_lists(folder.get("patent_ids", []), ids)

        await self._save_contents(folder)
        return folder

    async def remove_patents(
        self,
        user_id: str,
        folder_id: str,
        patent_ids: List[str],
        workfile_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        doomed = set(normalize_patent_ids(patent_ids))
        folder = await self._owned_folder(user_id, folder_id)

        if workfile_name:
            workfile = _find_workfile(folder, name=workfile_name)
            if not workfile:
                raise FolderError("Workfile not found", status_code=404)
            workfile["patent_ids"] = [p for p in workfile.get("patent_ids", []) if p not in doomed]
        else:
            folder["patent_ids"] = [p for p in folder.get("patent_ids", []) if p not in doomed]

        await self._save_contents(folder)
        return folder

    async def delete_patent(self, user_id: str, folder_id: str, patent_id: str) -> Dict[str, Any]:
        """Remove one patent from the folder list and from every workfile."""
        target = standardize_patent_number(patent_id.strip())
        folder = await self._owned_folder(user_id, folder_id)

        folder["patent_ids"] = [p for p in folder.get("patent_ids", []) if p != target]
        for workfile in folder.get("work_files", []):
            workfile["patent_ids"] = [p for p in workfile.get("patent_ids", []) if p != target]

        await self._save_contents(folder)
        return folder

    # ========================================================================
    # Workfiles
    # ========================================================================

    async def merge_workfiles(
        self,
        user_id: str,
        folder_id: str,
        workfile_ids: List[str],
        new_name: str,
    ) -> Dict[str, Any]:
        """Create a new workfile holding the union of the given workfiles."""
        if len(set(workfile_ids)) < 2:
            raise FolderError("Select at least two workfiles to merge")
        if not (new_name or "").strip():
            raise FolderError("Merged workfile name is required")

        folder = await self._owned_folder(user_id, folder_id)
        sources = []
        for workfile_id in workfile_ids:
            workfile = _find_workfile(folder, workfile_id=workfile_id)
            if not workfile:
                raise FolderError(f"Workfile {workfile_id} not found", status_code=404)
            sources.append(workfile.get("patent_ids", []))

        merged = WorkFile(name=new_name.strip(), patent_ids=merge_patent_lists(*sources)).model_dump()
        folder.setdefault("work_files", []).append(merged)
        await self._save_contents(folder)

        logger.info(f"Merged {len(sources)} workfiles into {merged['workfile_id']} ({len(merged['patent_ids'])} patents)")
        return merged

    async def delete_workfile(self, user_id: str, folder_id: str, workfile_id: str) -> None:
        await self._owned_folder(user_id, folder_id)
        db = await self._get_db()
        result = await db.custom_patent_lists.update_one(
            {"folder_id": folder_id, "user_id": user_id},
            {"$pull": {"work_files": {"workfile_id": workfile_id}},
             "$set": {"timestamp": datetime.now(timezone.utc)}}
        )
        if result.modified_count == 0:
            raise FolderError("Workfile not found", status_code=404)

    # ========================================================================
    # Saved patents
    # ========================================================================

    async def save_patents(
        self,
        user_id: str,
        patent_ids: List[str],
        folder_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        ids = normalize_patent_ids(patent_ids)
        if not ids:
            raise FolderError("At least one patent ID is required")

        db = await self._get_db()
        operations = [
            UpdateOne(
                {"user_id": user_id, "patent_id": patent_id},
                {"$setOnInsert": SavedPatent(user_id=user_id, patent_id=patent_id).model_dump()},
                upsert=True,
            )
            for patent_id in ids
        ]
        result = await db.saved_patents.bulk_write(operations, ordered=False)

        folder = None
        if folder_name:
            folder = await self.create_folder(
                user_id, folder_name, patent_ids=ids, source=FolderSource.IMPORTED_LIST.value
            )

        logger.info(f"User {user_id} saved {len(ids)} patents ({result.upserted_count} new)")
        return {
            "patent_ids": ids,
            "saved_count": len(ids),
            "new_count": result.upserted_count,
            "folder": folder,
        }

    async def list_saved(self, user_id: str, limit: int = 1000) -> List[Dict[str, Any]]:
        db = await self._get_db()
        return await db.saved_patents.find(
            {"user_id": user_id}, {"_id": 0}
        ).sort("created_at", -1).to_list(limit)

    # ========================================================================
    # Search history
    # ========================================================================

    async def get_history(self, user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        db = await self._get_db()
        return await db.search_history.find(
            {"user_id": user_id}, {"_id": 0}
        ).sort("timestamp", -1).to_list(limit)

    async def add_history(self, user_id: str, patent_id: str, source: Optional[str] = None) -> Dict[str, Any]:
        patent_id = (patent_id or "").replace("-", "").strip().upper()
        if not patent_id:
            raise FolderError("patent_id is required")

        entry = {
            "user_id": user_id,
            "patent_id": patent_id,
            "source": source,
            "timestamp": datetime.now(timezone.utc),
        }
        db = await self._get_db()
        await db.search_history.update_one(
            {"user_id": user_id, "patent_id": patent_id},
            {"$set": entry},
            upsert=True,
        )
        return entry

    async def clear_history(self, user_id: str, patent_id: Optional[str] = None) -> int:
        query: Dict[str, Any] = {"user_id": user_id}
        if patent_id:
            query["patent_id"] = patent_id.replace("-", "").strip().upper()
        db = await self._get_db()
        result = await db.search_history.delete_many(query)
        return result.deleted_count

    # ========================================================================
    # Read status
    # ========================================================================

    async def mark_read(self, user_id: str, patent_id: str) -> Dict[str, Any]:
        patent_id = standardize_patent_number((patent_id or "").strip())
        if not patent_id:
            raise FolderError("Patent ID is required")

        status = PatentReadStatus(user_id=user_id, patent_id=patent_id)
        db = await self._get_db()
        await db.patent_read_status.update_one(
            {"user_id": user_id, "patent_id": patent_id},
            {"$set": {"read_at": status.read_at}},
            upsert=True,
        )
        return status.model_dump()

    async def list_read(self, user_id: str, limit: int = 1000) -> List[str]:
        """Read patent IDs, most recently read first."""
        db = await self._get_db()
        rows = await db.patent_read_status.find(
            {"user_id": user_id}, {"_id": 0, "patent_id": 1}
        ).sort("read_at", -1).to_list(limit)
        return [row["patent_id"] for row in rows]

    async def check_read_status(self, user_id: str, patent_ids: List[str]) -> List[Dict[str, Any]]:
        ids = [standardize_patent_number(p.strip()) for p in patent_ids if p and p.strip()]
        if not ids:
            return []

        db = await self._get_db()
        rows = await db.patent_read_status.find(
            {"user_id": user_id, "patent_id": {"$in": ids}},
            {"_id": 0, "patent_id": 1, "read_at": 1}
        ).to_list(len(ids))
        read_at = {row["patent_id"]: row.get("read_at") for row in rows}

        return [
            {"patent_id": patent_id, "is_read": patent_id in read_at, "read_at": read_at.get(patent_id)}
            for patent_id in ids
        ]


folder_service = FolderService()
