# empath/api/v1/pipeline.py pipeline status API
from fastapi import APIRouter

from .conversation import conversation_manager

router = APIRouter()


@router.get("/status")
async def get_pipeline_status():
    """Lane activity and history sizes of every connected conversation."""
    return {
        "active_conversations": len(conversation_manager.sessions),
        "conversations": {
            client_id: session.pipeline.status()
            for client_id, session in conversation_manager.sessions.items()
        },
    }
