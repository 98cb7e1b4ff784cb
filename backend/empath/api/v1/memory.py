# empath/api/v1/memory.py memory REST API: save, search, stats, delete, tools
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

import empath.global_vars as global_vars
from empath.core.config import MEMORY_CONFIG
from empath.memory.indexer import ConversationIndexer
from empath.memory.tools import MemoryToolService
from empath.memory.vector_store import get_memory_manager
from empath.protocols.memory import MemoryManager, MemoryType

router = APIRouter()


class SaveMemoryRequest(BaseModel):
    content: str = Field(..., min_length=1)
    type: str = MemoryType.FACT.value
    importance: float = 0.5
    tags: List[str] = []
    context: Optional[str] = None


class SearchMemoryRequest(BaseModel):
    query: str = Field(..., min_length=1)
    limit: int = Field(5, ge=1, le=20)
    min_similarity: float = MEMORY_CONFIG["default_min_similarity"]
    type_filter: Optional[str] = None


class ContextRequest(BaseModel):
    message: str = Field(..., min_length=1)
    limit: int = Field(3, ge=1, le=10)


class ToolCall(BaseModel):
    parameters: Dict[str, Any] = {}


async def get_memory() -> MemoryManager:
    """Shared memory manager, created on first use."""
    if global_vars.memory_manager is None:
        global_vars.memory_manager = await get_memory_manager()
    return global_vars.memory_manager


def _memory_type(value: Optional[str]) -> Optional[MemoryType]:
    if value is None:
        return None
    try:
        return MemoryType.coerce(value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown memory type: {value}")


@router.post("/save")
async def save_memory(request: SaveMemoryRequest, memory: MemoryManager = Depends(get_memory)):
    try:
        entry_id = await memory.insert(
            request.content,
            _memory_type(request.type),
            importance=request.importance,
            tags=request.tags,
            context=request.context,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"success": True, "id": entry_id, "message": f"Memory saved with id {entry_id}"}


@router.post("/search")
async def search_memory(request: SearchMemoryRequest, memory: MemoryManager = Depends(get_memory)):
    results = await memory.search(
        request.query,
        limit=request.limit,
        min_similarity=request.min_similarity,
        type_filter=_memory_type(request.type_filter),
    )
    return {
        "success": True,
        "results": [
            {**r.entry.to_public_dict(), "similarity": r.similarity, "distance": r.distance}
            for r in results
        ],
        "message": f"Found {len(results)} relevant memories",
    }


@router.post("/context")
async def relevant_context(request: ContextRequest, memory: MemoryManager = Depends(get_memory)):
    """Older memories related to a message, for enriching a reply."""
    result = await ConversationIndexer(memory).search_relevant_context(request.message, request.limit)
    return {"success": True, **result}


@router.get("/stats")
async def memory_stats(memory: MemoryManager = Depends(get_memory)):
    stats = memory.stats()
    return {"success": True, "stats": stats.to_dict(), "message": f"{stats.total_entries} memories stored in total"}


@router.get("/tools")
async def list_tools(memory: MemoryManager = Depends(get_memory)):
    return {"success": True, "tools": MemoryToolService(memory).available_tools()}


@router.post("/tools/{tool_name}")
async def run_tool(tool_name: str, call: ToolCall, memory: MemoryManager = Depends(get_memory)):
    try:
        return await MemoryToolService(memory).execute_tool(tool_name, call.parameters)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/index-vectors/regenerate")
async def regenerate_index_vectors(memory: MemoryManager = Depends(get_memory)):
    await memory.regenerate_index_vectors()
    return {"success": True, "message": "Reference vectors regenerated"}


@router.delete("/index-vectors")
async def clear_index_vectors(memory: MemoryManager = Depends(get_memory)):
    """Drop the reference vectors; the next insert or search generates fresh ones."""
    await memory.clear_index_vectors()
    return {"success": True, "message": "Reference vectors cleared"}


@router.get("/{entry_id}")
async def get_memory_entry(entry_id: str, memory: MemoryManager = Depends(get_memory)):
    entry = memory.get(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Memory {entry_id} not found")
    return {"success": True, "memory": entry.to_public_dict()}


@router.delete("/{entry_id}")
async def delete_memory(entry_id: str, memory: MemoryManager = Depends(get_memory)):
    deleted = await memory.delete(entry_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Memory {entry_id} not found")
    return {"success": True, "message": f"Memory {entry_id} deleted"}
