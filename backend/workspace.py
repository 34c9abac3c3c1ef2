# workspace.py — Org-scoped workspace collections: tasks, docs, automations, settings, audit log
import copy
import logging
from typing import Any, Dict, Iterable, List, Optional

from fastapi import HTTPException

from document_store import DocumentStore, DocumentNotFound, Increment
from models import TaskStatus, TaskPriority

logger = logging.getLogger("solis-center.workspace")

TASKS = "tasks"
DOCS = "docs"
AUTOMATIONS = "automations"
WORKSPACES = "workspaces"
TEMPLATES = "templates"
AUDIT_LOGS = "audit_logs"
SETTINGS = "settings"
ORG = "org"
ORG_PROFILE_ID = "profile"


def _require_text(value: Any, label: str) -> str:
    text = (value or "").strip() if isinstance(value, str) else ""
    if not text:
        raise HTTPException(status_code=400, detail=f"{label} is required")
    return text


def _enum_value(enum_cls, value: Any, label: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {label}: {value}")


# ============================================================
# GENERIC COLLECTION
# ============================================================

class OrgCollection:
    """List/get/create/update/delete for one top-level collection.

    Listings are newest first. ``defaults`` fill fields the caller leaves out.
    """

    path: str = ""
    label: str = "Document"
    title_field: str = "name"
    defaults: Dict[str, Any] = {}
    updatable: Iterable[str] = ()

    def __init__(self, store: DocumentStore):
        self.store = store

    async def list(self, **where: Any) -> List[Dict[str, Any]]:
        return await self.store.query(self.path, where=where or None, descending=True)

    async def get(self, doc_id: str) -> Dict[str, Any]:
        doc = await self.store.get(self.path, doc_id)
        if doc is None:
            raise DocumentNotFound(self.path, doc_id)
        return doc

    def _prepare(self, data: Dict[str, Any]) -> Dict[str, Any]:
        body = copy.deepcopy(self.defaults)
        body.update({k: v for k, v in data.items() if v is not None})
        body[self.title_field] = _require_text(body.get(self.title_field), self.label + " " + self.title_field)
        return body

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        doc_id = await self.store.add(self.path, self._prepare(data))
        return await self.get(doc_id)

    def _changes(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        allowed = set(self.updatable)
        changes = {k: v for k, v in patch.items() if k in allowed and v is not None}
        if self.title_field in changes:
            changes[self.title_field] = _require_text(changes[self.title_field], self.label + " " + self.title_field)
        return changes

    async def update(self, doc_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        await self.get(doc_id)
        changes = self._changes(patch)
        if not changes:
            return await self.get(doc_id)
        return await self.store.update(self.path, doc_id, changes)

    async def delete(self, doc_id: str) -> Dict[str, Any]:
        doc = await self.get(doc_id)
        await self.store.delete(self.path, doc_id)
        return doc


class WorkspaceRepository(OrgCollection):
    path = WORKSPACES
    label = "Workspace"
    defaults = {"description": "", "color": None, "icon": None}
    updatable = ("name", "description", "color", "icon")


class TemplateRepository(OrgCollection):
    path = TEMPLATES
    label = "Template"
    defaults = {"description": "", "kind": "task", "content": ""}
    updatable = ("name", "description", "kind", "content")


# ============================================================
# TASKS
# ============================================================

class TaskRepository(OrgCollection):
    path = TASKS
    label = "Task"
    title_field = "title"
    defaults = {
        "description": "",
        "status": TaskStatus.TODO.value,
        "priority": TaskPriority.MEDIUM.value,
        "assignees": [],
        "tags": [],
        "due_date": None,
        "workspace_id": None,
    }
    updatable = ("title", "description", "status", "priority", "assignees", "tags", "due_date", "workspace_id")

    def _prepare(self, data: Dict[str, Any]) -> Dict[str, Any]:
        body = super()._prepare(data)
        body["status"] = _enum_value(TaskStatus, body["status"], "status")
        body["priority"] = _enum_value(TaskPriority, body["priority"], "priority")
        return body

    def _changes(self, patch: Dict[str, Any]) -> Dict[str, Any]:
        changes = super()._changes(patch)
        if "status" in changes:
            changes["status"] = _enum_value(TaskStatus, changes["status"], "status")
        if "priority" in changes:
            changes["priority"] = _enum_value(TaskPriority, changes["priority"], "priority")
        return changes

    @staticmethod
    def comments_path(task_id: str) -> str:
        return f"{TASKS}/{task_id}/comments"

    @staticmethod
    def activity_path(task_id: str) -> str:
        return f"{TASKS}/{task_id}/activity"

    async def _record(self, task_id: str, actor_id: Optional[str], action: str,
                      field: Optional[str] = None, old_value: Any = None, new_value: Any = None) -> None:
        await self.store.add(self.activity_path(task_id), {
            "task_id": task_id,
            "actor_id": actor_id,
            "action": action,
            "field": field,
            "old_value": old_value,
            "new_value": new_value,
        })

    async def create_task(self, data: Dict[str, Any], actor_id: Optional[str] = None) -> Dict[str, Any]:
        body = self._prepare(data)
        body["created_by"] = actor_id
        async with self.store.transaction():
            task_id = await self.store.add(self.path, body)
            await self._record(task_id, actor_id, "created")
        return await self.get(task_id)

    async def update_task(self, task_id: str, patch: Dict[str, Any], actor_id: Optional[str] = None) -> Dict[str, Any]:
        """Apply ``patch`` and write one activity entry per field whose value changed"""
        changes = self._changes(patch)
        async with self.store.transaction():
            before = await self.store.get(self.path, task_id, for_update=True)
            if before is None:
                raise DocumentNotFound(self.path, task_id)
            if not changes:
                return before
            after = await self.store.update(self.path, task_id, changes)
            for field in changes:
                if before.get(field) == after.get(field):
                    continue
                action = "status_changed" if field == "status" else "updated"
                await self._record(task_id, actor_id, action, field, before.get(field), after.get(field))
        return after

    async def delete_task(self, task_id: str) -> Dict[str, Any]:
        async with self.store.transaction():
            task = await self.get(task_id)
            await self.store.delete_collection(self.comments_path(task_id))
            await self.store.delete_collection(self.activity_path(task_id))
            await self.store.delete(self.path, task_id)
        return task

    async def get_activity(self, task_id: str) -> List[Dict[str, Any]]:
        await self.get(task_id)
        return await self.store.query(self.activity_path(task_id))

    async def get_comments(self, task_id: str) -> List[Dict[str, Any]]:
        await self.get(task_id)
        return await self.store.query(self.comments_path(task_id))

    async def add_comment(self, task_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        content = _require_text(data.get("content"), "Comment content")
        async with self.store.transaction():
            await self.get(task_id)
            comment_id = await self.store.add(self.comments_path(task_id), {
                "task_id": task_id,
                "content": content,
                "user_id": data.get("user_id"),
                "display_name": data.get("display_name") or "",
                "mentions": list(dict.fromkeys(data.get("mentions") or [])),
                "parent_comment_id": data.get("parent_comment_id"),
                "edited": False,
            })
            await self._record(task_id, data.get("user_id"), "commented")
        return await self.store.get(self.comments_path(task_id), comment_id)

    async def edit_comment(self, task_id: str, comment_id: str, content: str) -> Dict[str, Any]:
        content = _require_text(content, "Comment content")
        return await self.store.update(self.comments_path(task_id), comment_id, {"content": content, "edited": True})

    async def delete_comment(self, task_id: str, comment_id: str) -> bool:
        return await self.store.delete(self.comments_path(task_id), comment_id)


# ============================================================
# DOCS
# ============================================================

class DocRepository(OrgCollection):
    path = DOCS
    label = "Document"
    title_field = "title"
    defaults = {"content": "", "tags": [], "workspace_id": None, "archived": False, "version": 1}
    updatable = ("title", "content", "tags", "workspace_id", "archived")

    @staticmethod
    def revisions_path(doc_id: str) -> str:
        return f"{DOCS}/{doc_id}/revisions"

    async def create_doc(self, data: Dict[str, Any], editor_id: Optional[str] = None) -> Dict[str, Any]:
        body = self._prepare(data)
        body["version"] = 1
        body["last_edited_by"] = editor_id
        doc_id = await self.store.add(self.path, body)
        return await self.get(doc_id)

    async def update_doc(self, doc_id: str, patch: Dict[str, Any], editor_id: Optional[str] = None) -> Dict[str, Any]:
        """Content edits bump ``version`` and keep the previous text as a revision"""
        changes = self._changes(patch)
        async with self.store.transaction():
            before = await self.store.get(self.path, doc_id, for_update=True)
            if before is None:
                raise DocumentNotFound(self.path, doc_id)
            if not changes:
                return before
            if "content" in changes and changes["content"] != before.get("content"):
                await self.store.add(self.revisions_path(doc_id), {
                    "doc_id": doc_id,
                    "content": before.get("content") or "",
                    "version": before.get("version") or 1,
                    "edited_by": before.get("last_edited_by"),
                })
                changes["version"] = Increment(1)
            changes["last_edited_by"] = editor_id
            return await self.store.update(self.path, doc_id, changes)

    async def get_revisions(self, doc_id: str) -> List[Dict[str, Any]]:
        await self.get(doc_id)
        return await self.store.query(self.revisions_path(doc_id), descending=True)

    async def delete_doc(self, doc_id: str) -> Dict[str, Any]:
        async with self.store.transaction():
            doc = await self.get(doc_id)
            await self.store.delete_collection(self.revisions_path(doc_id))
            await self.store.delete(self.path, doc_id)
        return doc


# ============================================================
# AUTOMATIONS
# ============================================================

class AutomationRepository(OrgCollection):
    path = AUTOMATIONS
    label = "Automation"
    defaults = {"description": "", "trigger": {}, "conditions": [], "actions": [], "enabled": True}
    updatable = ("name", "description", "trigger", "conditions", "actions", "enabled")

    async def toggle(self, automation_id: str) -> Dict[str, Any]:
        async with self.store.transaction():
            automation = await self.store.get(self.path, automation_id, for_update=True)
            if automation is None:
                raise DocumentNotFound(self.path, automation_id)
            return await self.store.update(self.path, automation_id, {"enabled": not automation.get("enabled", True)})


# ============================================================
# AUDIT LOG, ORG PROFILE, SETTINGS
# ============================================================

async def log_action(store: DocumentStore, action: str, resource: str, detail: str = "",
                     actor_id: Optional[str] = None, actor_name: str = "") -> str:
    log_id = await store.add(AUDIT_LOGS, {
        "action": action,
        "resource": resource,
        "detail": detail,
        "actor_id": actor_id,
        "actor_name": actor_name,
    })
    logger.info(f"AUDIT: {action} {resource} '{detail}' by {actor_name or actor_id}")
    return log_id


async def get_audit_logs(store: DocumentStore, limit: int = 100,
                         resource: Optional[str] = None) -> List[Dict[str, Any]]:
    where = {"resource": resource} if resource else None
    return await store.query(AUDIT_LOGS, where=where, descending=True, limit=limit)


async def get_org(store: DocumentStore) -> Dict[str, Any]:
    org = await store.get(ORG, ORG_PROFILE_ID)
    return org or {"id": ORG_PROFILE_ID, "name": store.org_id}


async def update_org(store: DocumentStore, data: Dict[str, Any]) -> Dict[str, Any]:
    return await store.set(ORG, ORG_PROFILE_ID, data, merge=True)


async def get_settings(store: DocumentStore, key: str) -> Optional[Dict[str, Any]]:
    return await store.get(SETTINGS, key)


async def save_settings(store: DocumentStore, key: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Merge-save one settings document; keys not in ``data`` are kept"""
    return await store.set(SETTINGS, key, data, merge=True)
