# routers/workspace.py — Tasks, docs, automations, workspaces, templates, settings and audit log
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from auth import CurrentUser, require_permission, require_role
from document_store import DocumentStore, get_document_store
from models import MemberRole
from workspace import (
    TaskRepository, DocRepository, AutomationRepository, WorkspaceRepository,
    TemplateRepository, log_action, get_audit_logs, get_org, update_org,
    get_settings, save_settings,
)

router = APIRouter(prefix="/api/v1", tags=["Workspace"])


# ============================================================
# SCHEMAS
# ============================================================

# --- Tasks ---
class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assignees: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    due_date: Optional[str] = None
    workspace_id: Optional[str] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assignees: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    due_date: Optional[str] = None
    workspace_id: Optional[str] = None


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1)
    mentions: List[str] = []
    parent_comment_id: Optional[str] = None


class CommentEdit(BaseModel):
    content: str = Field(..., min_length=1)


# --- Docs ---
class DocCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    content: Optional[str] = None
    tags: Optional[List[str]] = None
    workspace_id: Optional[str] = None


class DocUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None
    workspace_id: Optional[str] = None
    archived: Optional[bool] = None


# --- Automations ---
class AutomationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    trigger: Dict[str, Any] = {}
    conditions: List[Dict[str, Any]] = []
    actions: List[Dict[str, Any]] = []


class AutomationUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    trigger: Optional[Dict[str, Any]] = None
    conditions: Optional[List[Dict[str, Any]]] = None
    actions: Optional[List[Dict[str, Any]]] = None
    enabled: Optional[bool] = None


# --- Workspaces / templates ---
class WorkspaceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    kind: Optional[str] = None
    content: Optional[str] = None


# ============================================================
# TASKS
# ============================================================

@router.get("/tasks")
async def list_tasks(
    status: Optional[str] = None,
    user: CurrentUser = Depends(require_permission("workspace:read")),
    store: DocumentStore = Depends(get_document_store),
):
    filters = {"status": status} if status else {}
    return await TaskRepository(store).list(**filters)


@router.post("/tasks", status_code=201)
async def create_task(
    body: TaskCreate,
    user: CurrentUser = Depends(require_permission("workspace:write")),
    store: DocumentStore = Depends(get_document_store),
):
    task = await TaskRepository(store).create_task(body.model_dump(exclude_none=True), actor_id=user.id)
    await log_action(store, "created", "task", task["title"], user.id, user.display_name)
    return task


@router.get("/tasks/{task_id}")
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(require_permission("workspace:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await TaskRepository(store).get(task_id)


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: str,
    body: TaskUpdate,
    user: CurrentUser = Depends(require_permission("workspace:write")),
    store: DocumentStore = Depends(get_document_store),
):
    repo = TaskRepository(store)
    before = await repo.get(task_id)
    task = await repo.update_task(task_id, body.model_dump(exclude_unset=True), actor_id=user.id)
    if task.get("status") == "done" and before.get("status") != "done":
        await log_action(store, "completed", "task", task["title"], user.id, user.display_name)
    return task


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(require_permission("workspace:write")),
    store: DocumentStore = Depends(get_document_store),
):
    task = await TaskRepository(store).delete_task(task_id)
    await log_action(store, "deleted", "task", task["title"], user.id, user.display_name)
    return {"deleted": True, "task_id": task_id}


@router.get("/tasks/{task_id}/activity")
async def get_task_activity(
    task_id: str,
    user: CurrentUser = Depends(require_permission("workspace:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await TaskRepository(store).get_activity(task_id)


@router.get("/tasks/{task_id}/comments")
async def list_task_comments(
    task_id: str,
    user: CurrentUser = Depends(require_permission("workspace:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await TaskRepository(store).get_comments(task_id)


@router.post("/tasks/{task_id}/comments", status_code=201)
async def add_task_comment(
    task_id: str,
    body: CommentCreate,
    user: CurrentUser = Depends(require_permission("workspace:write")),
    store: DocumentStore = Depends(get_document_store),
):
    return await TaskRepository(store).add_comment(task_id, {
        "content": body.content,
        "mentions": body.mentions,
        "parent_comment_id": body.parent_comment_id,
        "user_id": user.id,
        "display_name": user.display_name,
    })


@router.patch("/tasks/{task_id}/comments/{comment_id}")
async def edit_task_comment(
    task_id: str,
    comment_id: str,
    body: CommentEdit,
    user: CurrentUser = Depends(require_permission("workspace:write")),
    store: DocumentStore = Depends(get_document_store),
):
    repo = TaskRepository(store)
    comments = {c["id"]: c for c in await repo.get_comments(task_id)}
    comment = comments.get(comment_id)
    if comment is None:
        raise HTTPException(status_code=404, detail="Comment not found")
    if comment.get("user_id") != user.id:
        raise HTTPException(status_code=403, detail="Only the author can edit a comment")
    return await repo.edit_comment(task_id, comment_id, body.content)


@router.delete("/tasks/{task_id}/comments/{comment_id}")
async def delete_task_comment(
    task_id: str,
    comment_id: str,
    user: CurrentUser = Depends(require_permission("workspace:write")),
    store: DocumentStore = Depends(get_document_store),
):
    repo = TaskRepository(store)
    comments = {c["id"]: c for c in await repo.get_comments(task_id)}
    comment = comments.get(comment_id)
    if comment is None:
        raise HTTPException(status_code=404, detail="Comment not found")
    if comment.get("user_id") != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Only the author or an admin can delete a comment")
    await repo.delete_comment(task_id, comment_id)
    return {"deleted": True, "comment_id": comment_id}


# ============================================================
# DOCS
# ============================================================

@router.get("/docs")
async def list_docs(
    user: CurrentUser = Depends(require_permission("workspace:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await DocRepository(store).list()


@router.post("/docs", status_code=201)
async def create_doc(
    body: DocCreate,
    user: CurrentUser = Depends(require_permission("workspace:write")),
    store: DocumentStore = Depends(get_document_store),
):
    doc = await DocRepository(store).create_doc(body.model_dump(exclude_none=True), editor_id=user.id)
    await log_action(store, "created", "doc", doc["title"], user.id, user.display_name)
    return doc


@router.get("/docs/{doc_id}")
async def get_doc(
    doc_id: str,
    user: CurrentUser = Depends(require_permission("workspace:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await DocRepository(store).get(doc_id)


@router.patch("/docs/{doc_id}")
async def update_doc(
    doc_id: str,
    body: DocUpdate,
    user: CurrentUser = Depends(require_permission("workspace:write")),
    store: DocumentStore = Depends(get_document_store),
):
    return await DocRepository(store).update_doc(doc_id, body.model_dump(exclude_unset=True), editor_id=user.id)


@router.get("/docs/{doc_id}/revisions")
async def list_doc_revisions(
    doc_id: str,
    user: CurrentUser = Depends(require_permission("workspace:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await DocRepository(store).get_revisions(doc_id)


@router.delete("/docs/{doc_id}")
async def delete_doc(
    doc_id: str,
    user: CurrentUser = Depends(require_permission("workspace:write")),
    store: DocumentStore = Depends(get_document_store),
):
    doc = await DocRepository(store).delete_doc(doc_id)
    await log_action(store, "deleted", "doc", doc["title"], user.id, user.display_name)
    return {"deleted": True, "doc_id": doc_id}


# ============================================================
# AUTOMATIONS
# ============================================================

@router.get("/automations")
async def list_automations(
    user: CurrentUser = Depends(require_permission("workspace:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await AutomationRepository(store).list()


@router.post("/automations", status_code=201)
async def create_automation(
    body: AutomationCreate,
    user: CurrentUser = Depends(require_permission("automations:manage")),
    store: DocumentStore = Depends(get_document_store),
):
    data = body.model_dump(exclude_none=True)
    data["created_by"] = user.id
    automation = await AutomationRepository(store).create(data)
    await log_action(store, "created", "automation", automation["name"], user.id, user.display_name)
    return automation


@router.patch("/automations/{automation_id}")
async def update_automation(
    automation_id: str,
    body: AutomationUpdate,
    user: CurrentUser = Depends(require_permission("automations:manage")),
    store: DocumentStore = Depends(get_document_store),
):
    return await AutomationRepository(store).update(automation_id, body.model_dump(exclude_unset=True))


@router.post("/automations/{automation_id}/toggle")
async def toggle_automation(
    automation_id: str,
    user: CurrentUser = Depends(require_permission("automations:manage")),
    store: DocumentStore = Depends(get_document_store),
):
    return await AutomationRepository(store).toggle(automation_id)


@router.delete("/automations/{automation_id}")
async def delete_automation(
    automation_id: str,
    user: CurrentUser = Depends(require_permission("automations:manage")),
    store: DocumentStore = Depends(get_document_store),
):
    automation = await AutomationRepository(store).delete(automation_id)
    await log_action(store, "deleted", "automation", automation["name"], user.id, user.display_name)
    return {"deleted": True, "automation_id": automation_id}


# ============================================================
# WORKSPACES & TEMPLATES
# ============================================================

@router.get("/workspaces")
async def list_workspaces(
    user: CurrentUser = Depends(require_permission("workspace:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await WorkspaceRepository(store).list()


@router.post("/workspaces", status_code=201)
async def create_workspace(
    body: WorkspaceCreate,
    user: CurrentUser = Depends(require_permission("settings:write")),
    store: DocumentStore = Depends(get_document_store),
):
    data = body.model_dump(exclude_none=True)
    data["created_by"] = user.id
    workspace = await WorkspaceRepository(store).create(data)
    await log_action(store, "created", "workspace", workspace["name"], user.id, user.display_name)
    return workspace


@router.delete("/workspaces/{workspace_id}")
async def delete_workspace(
    workspace_id: str,
    user: CurrentUser = Depends(require_permission("settings:write")),
    store: DocumentStore = Depends(get_document_store),
):
    workspace = await WorkspaceRepository(store).delete(workspace_id)
    await log_action(store, "deleted", "workspace", workspace["name"], user.id, user.display_name)
    return {"deleted": True, "workspace_id": workspace_id}


@router.get("/templates")
async def list_templates(
    user: CurrentUser = Depends(require_permission("workspace:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await TemplateRepository(store).list()


@router.post("/templates", status_code=201)
async def create_template(
    body: TemplateCreate,
    user: CurrentUser = Depends(require_permission("settings:write")),
    store: DocumentStore = Depends(get_document_store),
):
    data = body.model_dump(exclude_none=True)
    data["created_by"] = user.id
    template = await TemplateRepository(store).create(data)
    await log_action(store, "created", "template", template["name"], user.id, user.display_name)
    return template


@router.delete("/templates/{template_id}")
async def delete_template(
    template_id: str,
    user: CurrentUser = Depends(require_permission("settings:write")),
    store: DocumentStore = Depends(get_document_store),
):
    template = await TemplateRepository(store).delete(template_id)
    await log_action(store, "deleted", "template", template["name"], user.id, user.display_name)
    return {"deleted": True, "template_id": template_id}


# ============================================================
# ORG, SETTINGS & AUDIT
# ============================================================

@router.get("/org")
async def read_org(
    user: CurrentUser = Depends(require_permission("workspace:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await get_org(store)


@router.put("/org")
async def write_org(
    body: Dict[str, Any],
    user: CurrentUser = Depends(require_role(MemberRole.OWNER, MemberRole.ADMIN)),
    store: DocumentStore = Depends(get_document_store),
):
    org = await update_org(store, body)
    await log_action(store, "updated", "org", "settings", user.id, user.display_name)
    return org


@router.get("/settings/{key}")
async def read_settings(
    key: str,
    user: CurrentUser = Depends(require_permission("workspace:read")),
    store: DocumentStore = Depends(get_document_store),
):
    settings = await get_settings(store, key)
    if settings is None:
        raise HTTPException(status_code=404, detail=f"No settings saved for '{key}'")
    return settings


@router.put("/settings/{key}")
async def write_settings(
    key: str,
    body: Dict[str, Any],
    user: CurrentUser = Depends(require_permission("settings:write")),
    store: DocumentStore = Depends(get_document_store),
):
    settings = await save_settings(store, key, body)
    await log_action(store, "updated", key, "settings", user.id, user.display_name)
    return settings


@router.get("/audit-logs")
async def list_audit_logs(
    resource: Optional[str] = None,
    limit: int = Query(default=100, le=500),
    user: CurrentUser = Depends(require_permission("admin:audit")),
    store: DocumentStore = Depends(get_document_store),
):
    return await get_audit_logs(store, limit=limit, resource=resource)
