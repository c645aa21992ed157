"""
In-memory Opportunity API Server
================================

FastAPI implementation of the opportunities REST API backed by a dict.
Used by the test suite (through httpx.ASGITransport) and for local demos:

    python -m opportunity_board.api.mock_server
"""

from datetime import date, timedelta
from typing import Optional

import structlog
import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Request

from opportunity_board.core.config import settings
from opportunity_board.core.filters import filter_opportunities
from opportunity_board.core.logging_config import configure_logging
from opportunity_board.core.models import (
    Grade,
    Opportunity,
    OpportunityStatus,
    Partition,
    Role,
    RoleStatus,
    needs_hire_for,
)
from opportunity_board.core.schemas import (
    OpportunityCreate,
    OpportunityFilters,
    OpportunityMoveRequest,
    OpportunityUpdate,
    RoleCreate,
    RoleStatusUpdate,
    RoleUpdate,
)

logger = structlog.get_logger()


# ==========================================================================
# Repository
# ==========================================================================

class InMemoryOpportunityRepository:
    """Opportunities keyed by id, in creation order. Ids look like ``srv-<n>``."""

    def __init__(self):
        self._opportunities: dict[str, Opportunity] = {}
        self._counter = 0
        self._failures: list[tuple[int, str]] = []

    def next_id(self) -> str:
        self._counter += 1
        return f"srv-{self._counter}"

    def fail_next(self, status_code: int = 500, detail: str = "Injected failure") -> None:
        """Make the next mutating request fail with the given status."""
        self._failures.append((status_code, detail))

    def take_failure(self) -> Optional[tuple[int, str]]:
        return self._failures.pop(0) if self._failures else None

    def list(self, status: Optional[OpportunityStatus] = None) -> list[Opportunity]:
        return [o for o in self._opportunities.values() if status is None or o.status == status]

    def get(self, opportunity_id: str) -> Opportunity:
        opportunity = self._opportunities.get(opportunity_id)
        if opportunity is None:
            raise HTTPException(status_code=404, detail=f"Opportunity {opportunity_id} not found")
        return opportunity

    def save(self, opportunity: Opportunity) -> Opportunity:
        self._opportunities[opportunity.id] = opportunity
        return opportunity

    def get_role(self, opportunity: Opportunity, role_id: str) -> Role:
        for role in opportunity.roles:
            if role.id == role_id:
                return role
        raise HTTPException(status_code=404, detail=f"Role {role_id} not found")

    def replace_role(self, opportunity: Opportunity, role: Role) -> Opportunity:
        roles = tuple(role if r.id == role.id else r for r in opportunity.roles)
        return self.save(opportunity.model_copy(update={"roles": roles}))


def _create_initial_opportunities(repository: InMemoryOpportunityRepository) -> None:
    """Seed a few opportunities for demos."""
    today = date.today()
    samples = [
        ("Acme Corp", "Platform rebuild", 6, 70, OpportunityStatus.IN_PROGRESS,
         [("Tech Lead", Grade.SC, RoleStatus.OPEN), ("Backend Engineer", Grade.SE, RoleStatus.STAFFED)]),
        ("Globex", "Data migration", 10, 40, OpportunityStatus.ON_HOLD,
         [("Data Engineer", Grade.EN, RoleStatus.OPEN)]),
        ("Initech", "Mobile app", 3, 100, OpportunityStatus.DONE,
         [("iOS Developer", Grade.ST, RoleStatus.WON)]),
    ]
    for client, name, weeks, probability, status, roles in samples:
        repository.save(Opportunity(
            id=repository.next_id(),
            client_name=client,
            opportunity_name=name,
            open_date=today.isoformat(),
            expected_start_date=(today + timedelta(weeks=weeks)).isoformat(),
            probability=probability,
            status=status,
            roles=tuple(
                Role(
                    id=repository.next_id(),
                    role_name=role_name,
                    required_grade=grade,
                    status=role_status,
                    needs_hire=needs_hire_for(role_status),
                )
                for role_name, grade, role_status in roles
            ),
        ))


# ==========================================================================
# Routes
# ==========================================================================

router = APIRouter(prefix="/opportunities", tags=["Opportunities"])


def _repository(request: Request) -> InMemoryOpportunityRepository:
    repository: InMemoryOpportunityRepository = request.app.state.repository
    failure = repository.take_failure() if request.method != "GET" else None
    if failure is not None:
        status_code, detail = failure
        raise HTTPException(status_code=status_code, detail=detail)
    return repository


def _dump(opportunity: Opportunity) -> dict:
    return opportunity.model_dump(mode="json", by_alias=True)


@router.get("")
async def list_opportunities(
    request: Request,
    status: Optional[Partition] = None,
    client: Optional[str] = None,
    grades: Optional[str] = None,
    needs_hire: Optional[str] = None,
    min_probability: Optional[int] = None,
    max_probability: Optional[int] = None,
):
    """List opportunities of one partition, optionally filtered."""
    repository = _repository(request)
    probability = None
    if min_probability is not None or max_probability is not None:
        probability = (min_probability or 0, 100 if max_probability is None else max_probability)
    filters = OpportunityFilters(
        client=client,
        grades=grades,
        needs_hire=needs_hire,
        probability=probability,
    )
    opportunities = repository.list(status.status if status else None)
    return [_dump(o) for o in filter_opportunities(opportunities, filters)]


@router.post("", status_code=201)
async def create_opportunity(request: Request, body: OpportunityCreate):
    repository = _repository(request)
    opportunity = repository.save(Opportunity(
        id=repository.next_id(),
        open_date=date.today().isoformat(),
        status=OpportunityStatus.IN_PROGRESS,
        **body.model_dump(),
    ))
    logger.info("mock_opportunity_created", opportunity_id=opportunity.id)
    return _dump(opportunity)


@router.post("/{opportunity_id}/roles", status_code=201)
async def add_role(request: Request, opportunity_id: str, body: RoleCreate):
    repository = _repository(request)
    opportunity = repository.get(opportunity_id)
    role = Role(id=repository.next_id(), status=RoleStatus.OPEN, **body.model_dump())
    return _dump(repository.save(opportunity.model_copy(update={"roles": opportunity.roles + (role,)})))


@router.patch("/{opportunity_id}/roles/{role_id}")
async def update_role(request: Request, opportunity_id: str, role_id: str, body: RoleUpdate):
    repository = _repository(request)
    opportunity = repository.get(opportunity_id)
    role = repository.get_role(opportunity, role_id)
    updated = Role.model_validate({**role.model_dump(), **body.model_dump(exclude_unset=True)})
    return _dump(repository.replace_role(opportunity, updated))


@router.patch("/{opportunity_id}/roles/{role_id}/status")
async def update_role_status(request: Request, opportunity_id: str, role_id: str, body: RoleStatusUpdate):
    repository = _repository(request)
    opportunity = repository.get(opportunity_id)
    role = repository.get_role(opportunity, role_id)
    updated = role.model_copy(update={"status": body.status, "needs_hire": needs_hire_for(body.status)})
    return _dump(repository.replace_role(opportunity, updated))


@router.post("/{opportunity_id}/move")
async def move_opportunity(request: Request, opportunity_id: str, body: OpportunityMoveRequest):
    repository = _repository(request)
    opportunity = repository.get(opportunity_id)
    logger.info("mock_opportunity_moved", opportunity_id=opportunity_id, status=body.status.value)
    return _dump(repository.save(opportunity.model_copy(update={"status": body.status})))


@router.patch("/{opportunity_id}")
async def update_opportunity(request: Request, opportunity_id: str, body: OpportunityUpdate):
    repository = _repository(request)
    opportunity = repository.get(opportunity_id)
    updated = Opportunity.model_validate({**opportunity.model_dump(), **body.model_dump(exclude_unset=True)})
    return _dump(repository.save(updated))


# ==========================================================================
# App factory
# ==========================================================================

def create_app(seed: bool = False) -> FastAPI:
    """Build a server with its own empty (or seeded) repository."""
    app = FastAPI(title=f"{settings.APP_NAME} mock API", version=settings.APP_VERSION)
    app.state.repository = InMemoryOpportunityRepository()
    if seed:
        _create_initial_opportunities(app.state.repository)
    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        return {"status": "ok", "opportunities": len(app.state.repository.list())}

    return app


def run_mock_server(host: str = "0.0.0.0", port: int = 8000):
    """Run the in-memory API server with seeded data."""
    configure_logging()
    uvicorn.run(create_app(seed=True), host=host, port=port)


if __name__ == "__main__":
    run_mock_server()
