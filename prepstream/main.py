# prepstream/main.py
import logging
import os

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from prepstream.api.feed_routes import router as feed_router
from prepstream.feed_manager import FeedHub
from prepstream.llm_client import GENERATION_ERRORS, OLLAMA_MODEL_NAME, generate_questions
from prepstream.remote_client import RemoteQuestionClient
from prepstream.schemas import GenerateRequest, GenerateResponse
from prepstream.storage import REDIS_URL, RedisFilterStore
from prepstream.templates import ProceduralGenerator

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="PrepStream Question Feed")
app.state.hub = FeedHub(ProceduralGenerator, RemoteQuestionClient(), RedisFilterStore(REDIS_URL))
app.include_router(feed_router)


@app.on_event("shutdown")
async def shutdown_event():
    await app.state.hub.close()


@app.get("/")
async def health_root():
    return {"ok": True}


@app.post("/api/questions/generate", response_model=GenerateResponse)
async def generate(payload: GenerateRequest):
    try:
        questions = await generate_questions(payload.filters, payload.count)
    except GENERATION_ERRORS:
        logger.warning("Question generation failed with model %s", OLLAMA_MODEL_NAME, exc_info=True)
        return JSONResponse(status_code=502, content={"error": "Failed to generate questions"})
    return GenerateResponse(questions=questions)


if __name__ == "__main__":
    uvicorn.run("prepstream.main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8080)))
