"""FastAPI application for the design generation service.

Run with:
    uvicorn inndesign.main:app --host 0.0.0.0 --port 8070 --reload
"""

import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from inndesign.errors import (
    DEFAULT_USER_MESSAGES,
    HTTP_STATUS,
    ErrorCode,
    GenerationFailedError,
    ProviderError,
    format_for_api,
)
from inndesign.orchestrator import build_orchestrator
from inndesign.routes import router

logger = logging.getLogger("inndesign.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    load_dotenv()
    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = build_orchestrator()
    yield


app = FastAPI(title="InnDesign", lifespan=lifespan)


@app.exception_handler(GenerationFailedError)
async def generation_failed_handler(_request: Request, exc: GenerationFailedError) -> JSONResponse:
    return JSONResponse(status_code=HTTP_STATUS[exc.error.code], content=format_for_api(exc.error))


@app.exception_handler(ProviderError)
async def provider_error_handler(_request: Request, exc: ProviderError) -> JSONResponse:
    logger.error("Unhandled provider error: %s", exc)
    return JSONResponse(
        status_code=502,
        content={
            "success": False,
            "error": DEFAULT_USER_MESSAGES[ErrorCode.GENERATION_FAILED],
            "code": ErrorCode.GENERATION_FAILED.value,
            "retryable": True,
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
