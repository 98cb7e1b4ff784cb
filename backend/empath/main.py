# empath/main.py FastAPI + Websocket entry point
import logging
import os

from dotenv import load_dotenv

# load .env before config reads the environment
load_dotenv()

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import empath.global_vars as global_vars
from empath.api.v1.conversation import conversation_manager, router as conversation_router
from empath.api.v1.memory import router as memory_router
from empath.api.v1.pipeline import router as pipeline_router
from empath.llm import LLMDecisionService, LLMProactiveMessageService, LLMReflectionService
from empath.memory.vector_store import get_memory_manager
from empath.utils.exception import EmpathError, ProviderError, setup_logging
from empath.utils.request import close_session

logger = logging.getLogger(__name__)

app = FastAPI(title="empath proactive conversation backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("EMPATH_CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EmpathError)
async def empath_error_handler(request: Request, exc: EmpathError):
    status_code = 503 if isinstance(exc, ProviderError) else 500
    logger.error(f"{request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"success": False, "message": str(exc)})


@app.on_event("startup")
async def startup_event():
    """Create the shared services."""
    if global_vars.memory_manager is None:
        global_vars.memory_manager = await get_memory_manager()
    if global_vars.decision_service is None:
        global_vars.decision_service = LLMDecisionService()
    if global_vars.reflection_service is None:
        global_vars.reflection_service = LLMReflectionService()
    if global_vars.proactive_service is None:
        global_vars.proactive_service = LLMProactiveMessageService()
    logger.info("empath services ready")


@app.on_event("shutdown")
async def shutdown_event():
    for client_id in list(conversation_manager.sessions):
        await conversation_manager.disconnect(client_id)
    await close_session()
    logger.info("empath shut down")


app.include_router(conversation_router)
app.include_router(memory_router, prefix="/api/v1/memory")
app.include_router(pipeline_router, prefix="/api/v1/pipeline")


def main():
    """Start the FastAPI application."""
    setup_logging(logging.DEBUG if os.environ.get("EMPATH_DEBUG") else logging.INFO)
    host = os.environ.get("API_HOST", "0.0.0.0")
    port = int(os.environ.get("API_PORT", 8000))
    uvicorn.run("empath.main:app", host=host, port=port)


if __name__ == "__main__":
    main()
