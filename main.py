import logging
import sys

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

load_dotenv()

from routes.study_routes import router as study_router  # noqa: E402
from utils.config import get_settings  # noqa: E402
from utils.exceptions import QuickStudyError  # noqa: E402

# Configure logging
logger = logging.getLogger(__name__)
logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)

app = FastAPI(
    title="Quick Study API",
    description="Session-scoped generation of notes, flashcards, quizzes, summaries and timelines",
    version="1.0.0",
)


@app.exception_handler(QuickStudyError)
async def quick_study_exception_handler(request: Request, exc: QuickStudyError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.error_code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(study_router)


@app.get("/")
async def root():
    return {"message": "Quick Study API is running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
