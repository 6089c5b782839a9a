"""
MAIN API - FastAPI application around the engagement pipeline

ENDPOINTS:
POST /              → engagement step (tester compatibility)
POST /api/honeypot  → engagement step
GET  /health        → liveness
GET  /session/{id}  → debug session snapshot
GET  /evidence      → accumulated evidence store
"""

import random
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .agent_controller import AgentController
from .auth import get_api_key
from .callback_client import ReportClient
from .engagement import EngagementController
from .errors import InternalError, ValidationError
from .evidence_store import EvidenceStore
from .models import EngagementResult, IncomingRequest
from .providers import GeminiProvider, GroqProvider, TextProvider
from .scam_detector import ScamDetector, SemanticClassifier
from .session_store import InMemorySessionStore, StoppingPolicy

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

VERSION = "3.0.0"


def build_providers() -> List[TextProvider]:
    """Primary Gemini, secondary Groq. Providers without a key are left out."""
    providers: List[TextProvider] = []
    if config.GEMINI_API_KEY:
        providers.append(GeminiProvider(config.GEMINI_API_KEY, config.GEMINI_MODEL))
    if config.GROQ_API_KEY:
        providers.append(GroqProvider(config.GROQ_API_KEY, config.GROQ_MODEL))
    if not providers:
        logger.warning("No AI provider configured, replies will come from templates")
    return providers


def build_classifier() -> SemanticClassifier:
    provider = None
    if config.GEMINI_API_KEY:
        provider = GeminiProvider(
            config.GEMINI_API_KEY,
            config.GEMINI_MODEL,
            temperature=0.1,
            max_output_tokens=500
        )
    elif config.GROQ_API_KEY:
        provider = GroqProvider(config.GROQ_API_KEY, config.GROQ_MODEL, temperature=0.1, max_tokens=500)
    return SemanticClassifier(provider, timeout=config.CLASSIFIER_TIMEOUT_SECONDS)


def build_controller() -> EngagementController:
    rng = random.Random(config.RANDOM_SEED)
    return EngagementController(
        store=InMemorySessionStore(),
        detector=ScamDetector(classifier=build_classifier()),
        orchestrator=AgentController(
            providers=build_providers(),
            rng=rng,
            provider_timeout=config.PROVIDER_TIMEOUT_SECONDS
        ),
        policy=StoppingPolicy(max_messages=config.MAX_MESSAGES),
        evidence_store=EvidenceStore(config.EVIDENCE_FILE),
        report_client=ReportClient(config.CALLBACK_URL) if config.CALLBACK_URL else None,
        enable_pacing=config.ENABLE_TYPING_DELAY,
    )


def create_app(controller: Optional[EngagementController] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Reports still in flight are awaited before the process exits
        await app.state.controller.wait_for_background()

    app = FastAPI(title="Scam Honeypot API", version=VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.controller = controller or build_controller()

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"status": "error", "detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def malformed_request_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"status": "error", "detail": "Invalid request body"})

    @app.exception_handler(InternalError)
    async def internal_error_handler(request: Request, exc: InternalError):
        return JSONResponse(status_code=500, content={"status": "error", "detail": InternalError.SAFE_MESSAGE})

    @app.post("/", response_model=EngagementResult)
    async def root_handler(request: IncomingRequest, api_key: str = Depends(get_api_key)):
        """Root endpoint that forwards to the honeypot handler for tester compatibility"""
        return await honeypot_handler(request, api_key)

    @app.post("/api/honeypot", response_model=EngagementResult)
    async def honeypot_handler(request: IncomingRequest, api_key: str = Depends(get_api_key)):
        return await app.state.controller.handle(
            request.sessionId,
            request.message,
            request.conversationHistory
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "version": VERSION}

    @app.get("/session/{session_id}")
    async def get_session_info(session_id: str, api_key: str = Depends(get_api_key)):
        """Debug endpoint to view session state"""
        session = app.state.controller.store.get(session_id)
        if not session:
            raise HTTPException(status_code=404, detail="Session not found")
        return session.to_dict()

    @app.get("/evidence")
    async def get_evidence(api_key: str = Depends(get_api_key)):
        evidence_store = app.state.controller.evidence_store
        if evidence_store is None:
            return {}
        return evidence_store.get_evidence()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("honeypot.main:app", host="0.0.0.0", port=8000)
