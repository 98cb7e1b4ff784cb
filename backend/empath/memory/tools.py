# empath/memory/tools.py memory operations exposed as callable tools
import logging
from typing import Any, Awaitable, Callable, Dict, List

from empath.core.config import MEMORY_CONFIG
from empath.protocols.memory import MemoryManager, MemoryType
from empath.utils.exception import EmpathError, PayloadValidationError

logger = logging.getLogger(__name__)

_MEMORY_TYPES = [t.value for t in MemoryType]

TOOL_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "save_memory": {
        "description": "Save important information to long-term memory: preferences, facts or insights about the user.",
        "parameters": {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "What to remember"},
                "type": {"type": "string", "enum": _MEMORY_TYPES, "description": "Kind of memory"},
                "importance": {"type": "number", "minimum": 0, "maximum": 1, "description": "0-1, 1 is very important"},
                "tags": {"type": "array", "items": {"type": "string"}},
                "context": {"type": "string", "description": "Optional background for the memory"},
            },
            "required": ["content", "type"],
        },
    },
    "search_memory": {
        "description": "Search long-term memory for information related to a question or topic.",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "limit": {"type": "number", "minimum": 1, "maximum": 20, "default": 5},
                "type_filter": {"type": "string", "enum": _MEMORY_TYPES},
                "min_similarity": {
                    "type": "number", "minimum": 0, "maximum": 1,
                    "default": MEMORY_CONFIG["default_min_similarity"],
                },
            },
            "required": ["query"],
        },
    },
    "get_memory_stats": {
        "description": "Statistics about stored memories: count, types, importance.",
        "parameters": {"type": "object", "properties": {}, "required": []},
    },
    "delete_memory": {
        "description": "Delete one memory by id.",
        "parameters": {
            "type": "object",
            "properties": {"id": {"type": "string"}},
            "required": ["id"],
        },
    },
}


def _string_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise PayloadValidationError(f"{name} must be a list of strings")
    return [str(v) for v in value]


def _unit_number(value: Any, name: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PayloadValidationError(f"{name} must be a number between 0 and 1")
    return float(value)


class MemoryToolService:
    """Dispatches tool calls to the memory manager; every result is a dict with success and message."""

    def __init__(self, memory: MemoryManager):
        self.memory = memory
        self.tool_handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            "save_memory": self.handle_save_memory,
            "search_memory": self.handle_search_memory,
            "get_memory_stats": self.handle_get_memory_stats,
            "delete_memory": self.handle_delete_memory,
        }

    def available_tools(self) -> List[Dict[str, Any]]:
        return [{"name": name, **schema} for name, schema in TOOL_SCHEMAS.items()]

    async def execute_tool(self, tool_name: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run a tool by name.

        Raises:
            ValueError: tool_name is not a known tool
        """
        handler = self.tool_handlers.get(tool_name)
        if handler is None:
            raise ValueError(f"Unknown tool: {tool_name}")
        try:
            return await handler(params or {})
        except (EmpathError, ValueError, TypeError, KeyError) as e:
            logger.error(f"Tool execution failed for {tool_name}: {e}")
            return {"success": False, "error": str(e), "message": f"Error while running tool {tool_name}"}

    async def handle_save_memory(self, params: Dict[str, Any]) -> Dict[str, Any]:
        content = params.get("content")
        if not content:
            return {"success": False, "message": "No content provided"}
        entry_id = await self.memory.insert(
            content,
            MemoryType.coerce(params.get("type")),
            importance=_unit_number(params.get("importance"), "importance", 0.5),
            tags=_string_list(params.get("tags"), "tags"),
            context=params.get("context"),
        )
        return {"success": True, "id": entry_id, "message": f"Memory saved with id {entry_id}"}

    async def handle_search_memory(self, params: Dict[str, Any]) -> Dict[str, Any]:
        query = params.get("query")
        if not query:
            return {"success": False, "message": "No query provided"}
        type_filter = params.get("type_filter")
        results = await self.memory.search(
            query,
            limit=int(params.get("limit", 5)),
            min_similarity=_unit_number(
                params.get("min_similarity"), "min_similarity", MEMORY_CONFIG["default_min_similarity"]
            ),
            type_filter=MemoryType.coerce(type_filter) if type_filter else None,
        )
        return {
            "success": True,
            "results": [{**r.entry.to_public_dict(), "similarity": r.similarity} for r in results],
            "message": f"Found {len(results)} relevant memories",
        }

    async def handle_get_memory_stats(self, params: Dict[str, Any]) -> Dict[str, Any]:
        stats = self.memory.stats()
        return {
            "success": True,
            "stats": stats.to_dict(),
            "message": f"{stats.total_entries} memories stored in total",
        }

    async def handle_delete_memory(self, params: Dict[str, Any]) -> Dict[str, Any]:
        entry_id = params.get("id")
        if not entry_id:
            return {"success": False, "message": "No id provided"}
        deleted = await self.memory.delete(entry_id)
        return {
            "success": deleted,
            "message": f"Memory {entry_id} deleted" if deleted else f"Memory {entry_id} not found",
        }
