#!/usr/bin/env python3

import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from circdesk.routes import api
from circdesk.configs import OPTIONS, LOG_LEVEL
from circdesk.core.exceptions import CircdeskError
from circdesk import __version__ as VERSION

logging.basicConfig(level=LOG_LEVEL.upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Circdesk API",
    description="Circdesk: circulation and reservations for library items",
    version=VERSION,
)

@app.exception_handler(CircdeskError)
async def circdesk_error_handler(request: Request, exc: CircdeskError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

app.include_router(api.router, prefix="/v1/api")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("circdesk.app:app", **OPTIONS)
