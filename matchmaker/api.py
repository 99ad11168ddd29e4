"""FastAPI app: profiles, matches, and introductions, with error mapping.

Authentication is handled upstream; the proxy forwards the caller's id in the
`X-User-Id` header.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import settings
from .domain import IntroView, MatchCandidate, ProfileData
from .errors import (
    Conflict,
    MatchingError,
    MatchmakerError,
    NoEmbedding,
    NotFound,
    PreconditionFailed,
    ValidationFailed,
)
from .logging_config import setup_logging
from .services import Services, build_sql_services
from .validation import validate_generate_request

logger = logging.getLogger(__name__)


# Pydantic request/response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    strategies: dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


class ProfileRequest(BaseModel):
    """Profile create/update body; field rules are checked by the validators."""
    niche_interest: str | None = None
    project: str | None = None
    connection_type: str | None = None
    rabbit_hole: str | None = None


class ProfileResponse(BaseModel):
    id: str
    user_id: str
    niche_interest: str
    project: str
    connection_type: str
    rabbit_hole: str | None = None
    created_at: datetime
    updated_at: datetime
    embedding_status: str


class EmbeddingStatusResponse(BaseModel):
    status: str


class MatchDTO(BaseModel):
    """Single ranked candidate."""
    candidate_id: str
    similarity_score: float
    diversity_score: float
    final_score: float
    reasons: list[str]


class MatchingMetadataDTO(BaseModel):
    total_candidates_considered: int
    total_filtered: int
    processing_time_ms: int


class MatchesResponse(BaseModel):
    user_id: str
    matches: list[MatchDTO]
    metadata: MatchingMetadataDTO


class MatchActionRequest(BaseModel):
    """Scores of the candidate being acted on, as returned by GET /matches."""
    similarity_score: float = Field(default=0.0, ge=-1.0, le=1.0)
    diversity_score: float = Field(default=0.0, ge=0.0, le=1.0)
    final_score: float = 0.0
    reasons: list[str] = Field(default_factory=list)


class ActionResponse(BaseModel):
    status: str
    match_id: str
    intro_id: str | None = None


class ContactDTO(BaseModel):
    user_id: str
    name: str
    email: str


class IntroDTO(BaseModel):
    id: str
    match_id: str
    other_party: ContactDTO
    shared_interest: str
    interests: list[str]
    status: str
    created_at: datetime


class StatusResponse(BaseModel):
    status: str


_ERROR_STATUS: dict[type[MatchmakerError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Conflict: status.HTTP_409_CONFLICT,
    NoEmbedding: status.HTTP_409_CONFLICT,
    PreconditionFailed: status.HTTP_412_PRECONDITION_FAILED,
    ValidationFailed: 422,
    MatchingError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def matchmaker_error_handler(request: Request, exc: MatchmakerError) -> JSONResponse:
    """Map domain errors to HTTP responses."""
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error(f"{exc.code}: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=exc.code, detail=str(exc)).model_dump(),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity as forwarded by the auth proxy."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required",
        )
    return x_user_id


def _profile_response(profile: ProfileData, embedding_status: str) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        user_id=profile.user_id,
        niche_interest=profile.niche_interest,
        project=profile.project,
        connection_type=profile.connection_type.value,
        rabbit_hole=profile.rabbit_hole,
        created_at=profile.created_at,
        updated_at=profile.updated_at,
        embedding_status=embedding_status,
    )


def _intro_dto(view: IntroView) -> IntroDTO:
    return IntroDTO(
        id=view.id,
        match_id=view.match_id,
        other_party=ContactDTO(
            user_id=view.other_party.user_id,
            name=view.other_party.name,
            email=view.other_party.email,
        ),
        shared_interest=view.shared_interest,
        interests=view.interests,
        status=view.status,
        created_at=view.created_at,
    )


def _candidate(candidate_id: str, body: MatchActionRequest | None) -> MatchCandidate:
    body = body or MatchActionRequest()
    return MatchCandidate(
        candidate_id=candidate_id,
        similarity_score=body.similarity_score,
        diversity_score=body.diversity_score,
        final_score=body.final_score,
        reasons=body.reasons,
    )


def create_app(services: Services | None = None) -> FastAPI:
    """Build the app; without `services`, the lifespan wires the SQL stack."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown logic."""
        setup_logging()
        logger.info(f"{settings.app_name} v{settings.version} starting up")
        if getattr(app.state, "services", None) is None:
            from .db import AsyncSessionMaker

            app.state.services = build_sql_services(AsyncSessionMaker)

        yield

        logger.info("Application shutting down")
        await app.state.services.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        description="Embedding-based connection matching with double opt-in introductions",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(MatchmakerError, matchmaker_error_handler)

    @app.get("/health", response_model=HealthResponse)
    async def health(svc: Services = Depends(get_services)) -> HealthResponse:
        """Health check endpoint."""
        report = await svc.matching.health_check()
        return HealthResponse(
            status="ok",
            version=settings.version,
            strategies=report["strategies"],
        )

    @app.post("/profiles", response_model=ProfileResponse, status_code=status.HTTP_201_CREATED)
    async def create_profile(
        body: ProfileRequest,
        user_id: str = Depends(current_user_id),
        svc: Services = Depends(get_services),
    ) -> ProfileResponse:
        """Create the caller's profile and queue its embedding.

        Returns immediately; poll /profiles/embedding-status for progress.
        """
        profile, embedding_status = await svc.profiles.create_profile(user_id, body.model_dump())
        return _profile_response(profile, embedding_status)

    @app.patch("/profiles", response_model=ProfileResponse)
    async def update_profile(
        body: ProfileRequest,
        user_id: str = Depends(current_user_id),
        svc: Services = Depends(get_services),
    ) -> ProfileResponse:
        profile, embedding_status = await svc.profiles.update_profile(
            user_id, body.model_dump(exclude_unset=True)
        )
        return _profile_response(profile, embedding_status)

    @app.get("/profiles/me", response_model=ProfileResponse)
    async def get_profile(
        user_id: str = Depends(current_user_id),
        svc: Services = Depends(get_services),
    ) -> ProfileResponse:
        profile = await svc.profiles.get_profile(user_id)
        return _profile_response(profile, await svc.profiles.get_embedding_status(user_id))

    @app.get("/profiles/embedding-status", response_model=EmbeddingStatusResponse)
    async def embedding_status(
        user_id: str = Depends(current_user_id),
        svc: Services = Depends(get_services),
    ) -> EmbeddingStatusResponse:
        return EmbeddingStatusResponse(status=await svc.profiles.get_embedding_status(user_id))

    @app.get("/matches", response_model=MatchesResponse)
    async def get_matches(
        limit: int | None = None,
        min_similarity_score: float | None = None,
        diversity_weight: float | None = None,
        user_id: str = Depends(current_user_id),
        svc: Services = Depends(get_services),
    ) -> MatchesResponse:
        """Ranked, explained candidates for the caller.

        Raises:
            NoEmbedding: (409) until the caller's embedding is stored
        """
        request = validate_generate_request(
            user_id,
            limit=limit,
            min_similarity_score=min_similarity_score,
            diversity_weight=diversity_weight,
        ).unwrap()
        response = await svc.matching.generate_matches(request)
        return MatchesResponse(
            user_id=response.user_id,
            matches=[
                MatchDTO(
                    candidate_id=m.candidate_id,
                    similarity_score=m.similarity_score,
                    diversity_score=m.diversity_score,
                    final_score=m.final_score,
                    reasons=m.reasons,
                )
                for m in response.matches
            ],
            metadata=MatchingMetadataDTO(
                total_candidates_considered=response.metadata.total_candidates_considered,
                total_filtered=response.metadata.total_filtered,
                processing_time_ms=response.metadata.processing_time_ms,
            ),
        )

    @app.post("/matches/{candidate_id}/accept", response_model=ActionResponse)
    async def accept_match(
        candidate_id: str,
        body: MatchActionRequest | None = None,
        user_id: str = Depends(current_user_id),
        svc: Services = Depends(get_services),
    ) -> ActionResponse:
        result = await svc.intros.accept(user_id, _candidate(candidate_id, body))
        return ActionResponse(status=result.status, match_id=result.match_id, intro_id=result.intro_id)

    @app.post("/matches/{candidate_id}/pass", response_model=ActionResponse)
    async def pass_match(
        candidate_id: str,
        body: MatchActionRequest | None = None,
        user_id: str = Depends(current_user_id),
        svc: Services = Depends(get_services),
    ) -> ActionResponse:
        result = await svc.intros.pass_match(user_id, _candidate(candidate_id, body))
        return ActionResponse(status=result.status, match_id=result.match_id)

    @app.get("/intros", response_model=list[IntroDTO])
    async def list_intros(
        user_id: str = Depends(current_user_id),
        svc: Services = Depends(get_services),
    ) -> list[IntroDTO]:
        return [_intro_dto(v) for v in await svc.intros.get_active_intros(user_id)]

    @app.post("/intros/{intro_id}/complete", response_model=StatusResponse)
    async def complete_intro(
        intro_id: str,
        user_id: str = Depends(current_user_id),
        svc: Services = Depends(get_services),
    ) -> StatusResponse:
        """Only the two members of the intro can complete it; others get 404."""
        await svc.intros.complete_introduction(intro_id, user_id)
        return StatusResponse(status="completed")

    return app


app = create_app()
