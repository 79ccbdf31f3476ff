from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException

from . import schemas
from .config import Settings
from .extraction.models import AgenticExtractionResult, ExtractionContext
from .logging_config import configure_from_settings
from .notes import decode_note
from .orchestrator import ExtractionOrchestrator
from .providers.llm.base import LLMProvider
from .services.order_client import OrderApiClient, OrderSubmissionError


def create_app(
    settings: Optional[Settings] = None,
    llm: Optional[LLMProvider] = None,
    order_client: Optional[OrderApiClient] = None,
) -> FastAPI:
    """
    Build the API around one orchestrator and one order client.

    Serve with any ASGI server, e.g. `uvicorn --factory dme_orders.main:create_app`.
    """
    settings = settings or Settings()
    configure_from_settings(settings)

    orchestrator = ExtractionOrchestrator(settings, llm=llm)
    client = order_client or OrderApiClient(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await client.close()

    app = FastAPI(
        title=settings.app_name,
        description="Extracts durable medical equipment orders from physician notes",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.order_client = client

    @app.get("/health", response_model=schemas.HealthResponse)
    def health_check():
        """Health check endpoint - reports whether an LLM is configured."""
        return {
            "status": "ok",
            "llm_configured": orchestrator.has_llm,
            "agentic_mode": settings.use_agentic_mode,
        }

    @app.post("/extract", response_model=schemas.ExtractResponse)
    async def extract(request: schemas.ExtractRequest):
        """
        Extract a device order from a physician note

        Uses the configured strategy chain (agentic, LLM, deterministic) and
        reports which strategy produced the order.
        """
        note_text = decode_note(request.text, request.filename or "")
        outcome = await orchestrator.extract_detailed(
            note_text, orchestrator.default_context(request.filename or "")
        )
        return {
            "order": outcome.order,
            "strategy": outcome.strategy,
            "confidence": outcome.confidence,
            "attempted": outcome.attempted,
        }

    @app.post("/extract/agentic", response_model=AgenticExtractionResult)
    async def extract_agentic(request: schemas.AgenticExtractRequest):
        """Run the multi-agent pipeline and return its full reasoning trace."""
        note_text = decode_note(request.text, request.filename or "")
        context = ExtractionContext(
            source_file=request.filename or "",
            mode=request.mode or settings.extraction_mode,
            require_validation=(
                settings.require_validation
                if request.require_validation is None
                else request.require_validation
            ),
        )
        return await orchestrator.extract_agentic(note_text, context)

    @app.post("/orders", response_model=schemas.OrderSubmitResponse)
    async def submit_order(request: schemas.ExtractRequest):
        """Extract an order and submit it to the downstream order API."""
        note_text = decode_note(request.text, request.filename or "")
        outcome = await orchestrator.extract_detailed(
            note_text, orchestrator.default_context(request.filename or "")
        )
        try:
            result = await client.submit(outcome.order)
        except OrderSubmissionError as e:
            raise HTTPException(status_code=502, detail=f"Order submission failed: {str(e)}")

        return {
            "order": outcome.order,
            "strategy": outcome.strategy,
            "submitted": result.submitted,
            "skipped": result.skipped,
            "status_code": result.status_code,
            "response": result.response,
        }

    return app
