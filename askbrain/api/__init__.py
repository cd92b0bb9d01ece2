"""API router for v1 endpoints."""

from fastapi import APIRouter

from askbrain.api import rag

router = APIRouter()

# Ask-LexyBrain conversational RAG
router.include_router(rag.router, tags=["rag"])
