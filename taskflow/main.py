"""Main FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskflow import __version__
from taskflow.api.endpoints import router
from taskflow.utils.logging import setup_logging

setup_logging()

app = FastAPI(
    title="TaskFlow AI",
    description=(
        "A conversational task manager: an AI assistant that creates, updates and deletes tasks "
        "and generates images it can attach to them."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    tags_metadata=[
        {
            "name": "Conversation",
            "description": "Stream a conversation turn with the AI assistant as newline-delimited JSON events.",
        },
        {
            "name": "Tasks",
            "description": "Direct task access for the task panel.",
        },
        {
            "name": "Images",
            "description": "Standalone image generation.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("taskflow.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
