"""Custodian HTTP server with API endpoints."""

from __future__ import annotations

import logging
import secrets
import time
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi import status as http_status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from custodiancore import __version__
from custodiancore.collectors import MappingRelationshipResolver, ResourceCollector, StaticCollector
from custodiancore.config import ScannerConfig
from custodiancore.errors import (
    CustodianError,
    ErrorCategory,
    PolicyValidationError,
)
from custodiancore.policy.evaluator import FilterEvaluator
from custodiancore.policy.models import Policy
from custodiancore.policy.validator import PolicyValidator
from custodiancore.scanner import PolicyScanner
from custodiancore.store import PolicyStore

logger = logging.getLogger(__name__)

_STATUS_BY_CATEGORY = {
    ErrorCategory.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    ErrorCategory.VALIDATION: 422,
    ErrorCategory.STORAGE: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCategory.COLLECTOR: http_status.HTTP_502_BAD_GATEWAY,
    ErrorCategory.INTERNAL: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class FilterModel(BaseModel):
    """Filter record in a policy request."""

    type: str
    key: str | None = None
    value: Any = None
    op: str | None = None
    required: bool = False
    negate: bool = False


class ActionModel(BaseModel):
    """Action record in a policy request."""

    type: str
    settings: dict[str, Any] = Field(default_factory=dict)
    dry_run: bool = True


class ModeModel(BaseModel):
    """Execution mode in a policy request."""

    type: str = "on-demand"
    schedule: str | None = None
    settings: dict[str, str] = Field(default_factory=dict)


class PolicyRequest(BaseModel):
    """Request body for creating or updating a policy."""

    resource_type: str
    description: str = ""
    filters: list[FilterModel] = Field(default_factory=list)
    actions: list[ActionModel] = Field(default_factory=list)
    mode: ModeModel = Field(default_factory=ModeModel)
    tags: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: str = "active"
    created_by: str | None = None
    source: str = "manual"
    template_id: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: str


def generate_error_id() -> str:
    """Generate unique error ID."""
    return f"err_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


def error_response(status_code: int, category: ErrorCategory | str, message: str) -> JSONResponse:
    """Build the standard error envelope."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "id": generate_error_id(),
                "category": getattr(category, "value", category),
                "message": message,
            }
        },
    )


def create_app(
    store: PolicyStore,
    collector: ResourceCollector | None = None,
    config: ScannerConfig | None = None,
    debug: bool = False,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        store: Policy store backing the policy endpoints
        collector: Snapshot source for scans (empty by default)
        config: Scanner configuration
        debug: Log stack traces of unexpected errors

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Custodian API",
        description="Cloud governance policies, dry-run scans and policy history",
        version=__version__,
    )

    collector = collector or StaticCollector()
    scanner = PolicyScanner(
        store,
        collector,
        config or ScannerConfig(),
        evaluator=FilterEvaluator(MappingRelationshipResolver(collector)),
    )

    @app.exception_handler(CustodianError)
    async def custodian_exception_handler(request: Request, exc: CustodianError):
        """Map domain errors onto HTTP status codes."""
        status_code = _STATUS_BY_CATEGORY.get(exc.category, http_status.HTTP_500_INTERNAL_SERVER_ERROR)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=debug)
        return error_response(status_code, exc.category, str(exc))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Wrap HTTP exceptions in the standard error envelope."""
        category = ErrorCategory.VALIDATION if exc.status_code < 500 else ErrorCategory.INTERNAL
        if exc.status_code == http_status.HTTP_404_NOT_FOUND:
            category = ErrorCategory.NOT_FOUND
        return error_response(exc.status_code, category, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
        """Wrap request validation errors in the standard error envelope."""
        return error_response(422, ErrorCategory.VALIDATION, str(exc))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions with the standard error envelope."""
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=debug)
        return error_response(http_status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCategory.INTERNAL, "internal error")

    @app.get("/health", response_model=HealthResponse)
    def health():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            timestamp=datetime.now(UTC).isoformat(),
        )

    @app.get("/api/v1/policies")
    def list_policies():
        """List stored policies."""
        policies = store.list()
        return {"policies": [p.to_dict() for p in policies], "count": len(policies)}

    @app.get("/api/v1/policies/{name}")
    def get_policy(name: str):
        """Get the current version of a policy."""
        return store.get(name).to_dict()

    @app.put("/api/v1/policies/{name}")
    def put_policy(name: str, body: PolicyRequest):
        """Create or update a policy."""
        record = body.model_dump()
        record["name"] = name
        if not record.get("created_by"):
            record.pop("created_by")
        PolicyValidator().validate_or_raise(record)
        try:
            policy = Policy.from_dict(record)
        except (KeyError, ValueError) as e:
            raise PolicyValidationError(str(e)) from e

        if store.exists(name):
            current = store.get(name)
            policy = policy.copy(
                created_at=current.created_at,
                run_count=current.run_count,
                last_run=current.last_run,
            )
        return store.save(policy).to_dict()

    @app.delete("/api/v1/policies/{name}")
    def delete_policy(name: str):
        """Delete a policy; its history is kept."""
        store.delete(name)
        return {"deleted": name}

    @app.get("/api/v1/policies/{name}/history")
    def policy_history(name: str):
        """List archived versions of a policy."""
        entries = store.history(name)
        return {"name": name, "history": [e.to_dict() for e in entries], "count": len(entries)}

    @app.get("/api/v1/policies/{name}/versions/{version}")
    def policy_version(name: str, version: int):
        """Get a policy as it was at a given version."""
        return store.get_version(name, version).to_dict()

    @app.post("/api/v1/scan/{name}")
    def scan_policy(name: str):
        """Dry-run scan of one policy."""
        return scanner.scan_policy(name).to_dict()

    @app.post("/api/v1/scan")
    def scan_all():
        """Dry-run scan of every active policy."""
        return scanner.scan_all_policies().to_dict()

    return app

