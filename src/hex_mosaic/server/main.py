import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hex_mosaic.server.engine import GEMINI_BASE_URL, GenerationEngine
from hex_mosaic.shared.errors import GenerationRejected, ServiceError
from hex_mosaic.shared.schemas import GenerateRequest, GenerateResponse

load_dotenv()

logger = logging.getLogger("hex_mosaic.server")

# --- Configuration ---
API_KEY = os.getenv("GEMINI_API_KEY")
BASE_URL = os.getenv("GEMINI_BASE_URL", GEMINI_BASE_URL)
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "5174"))


def create_app(engine: Optional[GenerationEngine] = None) -> FastAPI:
    """Builds the proxy. A given `engine` is used as is, otherwise one is made per app lifetime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if engine is not None:
            app.state.engine = engine
            yield
            return
        if not API_KEY:
            logger.warning("GEMINI_API_KEY not set. Set it in .env for API calls to work.")
        async with httpx.AsyncClient(timeout=None) as client:
            app.state.engine = GenerationEngine(API_KEY, client, BASE_URL)
            yield

    app = FastAPI(lifespan=lifespan)

    @app.exception_handler(GenerationRejected)
    async def rejected_handler(request: Request, exc: GenerationRejected):
        return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump(mode="json"))

    @app.get("/api/health")
    def health_check():
        return {"ok": True}

    @app.post("/api/generate", response_model=GenerateResponse)
    async def generate(body: GenerateRequest, request: Request):
        logger.info(f"[generate] model={body.model}, promptLen={len(body.prompt)}, parts={len(body.image_parts)}")
        try:
            return await request.app.state.engine.generate(body)
        except GenerationRejected:
            raise
        except Exception as e:
            logger.exception("Unexpected error during generation")
            raise ServiceError("Unexpected server error", str(e)) from e

    return app


app = create_app()


def run():
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    logger.info(f"Server running on http://{HOST}:{PORT}")
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    run()
