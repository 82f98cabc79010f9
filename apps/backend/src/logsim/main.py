import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import ValidationError as PydanticValidationError

from . import __version__
from .config import Settings, get_settings
from .engine import Engine
from .errors import EngineError, ValidationError
from .models import (
    ChainCreate,
    ChainScheduleCreate,
    ChainScheduleUpdate,
    GenerateRequest,
    HealthResponse,
    ScenarioRequest,
    ScheduleCreate,
    ScheduleUpdate,
)
from .scheduling.cron import CRON_EXAMPLES

load_dotenv()

logger = logging.getLogger(__name__)

# Fields an update may explicitly clear by sending null
CLEARABLE_FIELDS = ("start_date", "end_date")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stdout,
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
    )


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def _changes(update: Any) -> dict[str, Any]:
    data = update.model_dump(exclude_unset=True)
    return {k: v for k, v in data.items() if v is not None or k in CLEARABLE_FIELDS}


def _dump(items: list) -> list[dict]:
    return [item.model_dump(mode="json") for item in items]


# --- Root endpoints ---

root_router = APIRouter()


@root_router.get("/health", response_model=HealthResponse)
async def health(engine: Engine = Depends(get_engine)):
    return HealthResponse(
        status="ok",
        version=__version__,
        scheduler_running=engine.scheduler.running,
        active_scenarios=len(engine.runner.list().active),
        active_chains=len(engine.executor.active()),
    )


@root_router.get("/metrics")
async def prometheus_metrics(engine: Engine = Depends(get_engine)):
    return PlainTextResponse(engine.generator.metrics.exposition(), media_type=CONTENT_TYPE_LATEST)


# --- Generation ---

router = APIRouter()


@router.post("/generate")
async def generate_logs(request: GenerateRequest, engine: Engine = Depends(get_engine)):
    """Generate a one-shot burst of log entries."""
    if request.log_count > engine.settings.max_log_count:
        raise ValidationError(f"log_count must be between 1 and {engine.settings.max_log_count}")
    entries = engine.generator.generate(request.log_count, request.scenario)
    logger.info("Generated %d logs on request (scenario=%s)", len(entries), request.scenario)
    return {
        "status": "success",
        "generated": len(entries),
        "metrics_count": len(engine.generator.metrics.snapshot()),
        "sample_log": entries[0].model_dump(mode="json") if entries else None,
    }


@router.get("/metrics")
async def get_metrics(
    format: Literal["json", "prometheus"] = "prometheus",
    engine: Engine = Depends(get_engine),
):
    if format == "json":
        metrics = engine.generator.metrics.snapshot()
        return {"metrics": metrics, "count": len(metrics)}
    return PlainTextResponse(engine.generator.metrics.exposition(), media_type=CONTENT_TYPE_LATEST)


@router.get("/logs")
async def get_logs(
    limit: int = Query(100, ge=1, le=10_000),
    service: Optional[str] = None,
    level: Optional[str] = None,
    format: Literal["json", "text"] = "json",
    engine: Engine = Depends(get_engine),
):
    logs = engine.generator.recent(limit=limit, service=service, level=level)
    if format == "text":
        return PlainTextResponse("".join(f"{entry.as_text()}\n" for entry in logs))
    return {
        "logs": _dump(logs),
        "count": len(logs),
        "filters": {"service": service, "level": level, "limit": limit},
    }


@router.get("/logs/stats")
async def get_log_stats(engine: Engine = Depends(get_engine)):
    return engine.generator.statistics()


# --- Scenarios ---

@router.get("/scenarios/list")
async def list_scenarios(engine: Engine = Depends(get_engine)):
    listing = engine.runner.list()
    return {
        "available": _dump(listing.available),
        "active": _dump(listing.active),
        "chains": _dump(engine.chain_store.list()),
    }


@router.get("/scenarios/history")
async def scenario_history(limit: int = Query(50, ge=1), engine: Engine = Depends(get_engine)):
    return _dump(engine.runner.history(limit))


@router.post("/scenarios/start")
async def start_scenario(request: ScenarioRequest, engine: Engine = Depends(get_engine)):
    instance = engine.runner.start(request.type, request.config)
    return instance.model_dump(mode="json")


@router.post("/scenarios/stop")
async def stop_scenario(request: ScenarioRequest, engine: Engine = Depends(get_engine)):
    instance = engine.runner.stop(request.type, request.instance_id)
    return instance.model_dump(mode="json")


# --- Scenario schedules ---

@router.get("/schedules/cron/examples")
def cron_examples():
    return CRON_EXAMPLES


@router.get("/schedules")
async def list_schedules(engine: Engine = Depends(get_engine)):
    return _dump(engine.schedule_store.scenarios.list())


@router.post("/schedules")
async def create_schedule(request: ScheduleCreate, engine: Engine = Depends(get_engine)):
    schedule = engine.schedule_store.scenarios.create(**request.model_dump())
    return schedule.model_dump(mode="json")


@router.get("/schedules/{schedule_id}")
async def get_schedule(schedule_id: str, engine: Engine = Depends(get_engine)):
    return engine.schedule_store.scenarios.get(schedule_id).model_dump(mode="json")


@router.put("/schedules/{schedule_id}")
async def update_schedule(schedule_id: str, request: ScheduleUpdate, engine: Engine = Depends(get_engine)):
    schedule = engine.schedule_store.scenarios.update(schedule_id, **_changes(request))
    return schedule.model_dump(mode="json")


@router.delete("/schedules/{schedule_id}")
async def delete_schedule(schedule_id: str, engine: Engine = Depends(get_engine)):
    engine.schedule_store.scenarios.delete(schedule_id)
    return {"status": "deleted", "schedule_id": schedule_id}


@router.post("/schedules/{schedule_id}/enable")
async def enable_schedule(schedule_id: str, engine: Engine = Depends(get_engine)):
    return engine.schedule_store.scenarios.enable(schedule_id).model_dump(mode="json")


@router.post("/schedules/{schedule_id}/disable")
async def disable_schedule(schedule_id: str, engine: Engine = Depends(get_engine)):
    return engine.schedule_store.scenarios.disable(schedule_id).model_dump(mode="json")


@router.get("/schedules/{schedule_id}/executions")
async def schedule_executions(
    schedule_id: str,
    limit: Optional[int] = Query(None, ge=1),
    engine: Engine = Depends(get_engine),
):
    limit = limit or engine.settings.default_executions_limit
    return _dump(engine.schedule_store.scenarios.executions(schedule_id, limit))


# --- Chain schedules (registered before /chains/{chain_id}) ---

@router.get("/chains/schedules")
async def list_chain_schedules(engine: Engine = Depends(get_engine)):
    return _dump(engine.schedule_store.chains.list())


@router.post("/chains/schedules")
async def create_chain_schedule(request: ChainScheduleCreate, engine: Engine = Depends(get_engine)):
    schedule = engine.schedule_store.chains.create(**request.model_dump())
    return schedule.model_dump(mode="json")


@router.get("/chains/schedules/{schedule_id}")
async def get_chain_schedule(schedule_id: str, engine: Engine = Depends(get_engine)):
    return engine.schedule_store.chains.get(schedule_id).model_dump(mode="json")


@router.put("/chains/schedules/{schedule_id}")
async def update_chain_schedule(
    schedule_id: str,
    request: ChainScheduleUpdate,
    engine: Engine = Depends(get_engine),
):
    schedule = engine.schedule_store.chains.update(schedule_id, **_changes(request))
    return schedule.model_dump(mode="json")


@router.delete("/chains/schedules/{schedule_id}")
async def delete_chain_schedule(schedule_id: str, engine: Engine = Depends(get_engine)):
    engine.schedule_store.chains.delete(schedule_id)
    return {"status": "deleted", "schedule_id": schedule_id}


@router.post("/chains/schedules/{schedule_id}/enable")
async def enable_chain_schedule(schedule_id: str, engine: Engine = Depends(get_engine)):
    return engine.schedule_store.chains.enable(schedule_id).model_dump(mode="json")


@router.post("/chains/schedules/{schedule_id}/disable")
async def disable_chain_schedule(schedule_id: str, engine: Engine = Depends(get_engine)):
    return engine.schedule_store.chains.disable(schedule_id).model_dump(mode="json")


@router.get("/chains/schedules/{schedule_id}/executions")
async def chain_schedule_executions(
    schedule_id: str,
    limit: Optional[int] = Query(None, ge=1),
    engine: Engine = Depends(get_engine),
):
    limit = limit or engine.settings.default_executions_limit
    return _dump(engine.schedule_store.chains.executions(schedule_id, limit))


# --- Chains ---

@router.get("/chains")
async def list_chains(engine: Engine = Depends(get_engine)):
    return _dump(engine.chain_store.list())


@router.post("/chains")
async def create_chain(request: ChainCreate, engine: Engine = Depends(get_engine)):
    chain = engine.chain_store.create(
        name=request.name,
        steps=request.steps,
        description=request.description,
        config=request.config,
    )
    return chain.model_dump(mode="json")


@router.get("/chains/executions/active")
async def active_chain_executions(engine: Engine = Depends(get_engine)):
    return _dump(engine.executor.active())


@router.get("/chains/{chain_id}")
async def get_chain(chain_id: str, engine: Engine = Depends(get_engine)):
    return engine.chain_store.get(chain_id).model_dump(mode="json")


@router.delete("/chains/{chain_id}")
async def delete_chain(chain_id: str, engine: Engine = Depends(get_engine)):
    engine.chain_store.delete(chain_id)
    return {"status": "deleted", "chain_id": chain_id}


@router.post("/chains/{chain_id}/start")
async def start_chain(chain_id: str, engine: Engine = Depends(get_engine)):
    return engine.executor.start(chain_id).model_dump(mode="json")


@router.post("/chains/{execution_id}/stop")
async def stop_chain_execution(execution_id: str, engine: Engine = Depends(get_engine)):
    return engine.executor.stop(execution_id).model_dump(mode="json")


@router.get("/chains/{chain_id}/executions")
async def chain_executions(
    chain_id: str,
    limit: Optional[int] = Query(None, ge=1),
    engine: Engine = Depends(get_engine),
):
    limit = limit or engine.settings.default_executions_limit
    return _dump(engine.chain_store.executions(chain_id, limit))


# --- Application factory ---

def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.error_type, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "type": exc.error_type},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"field": ".".join(str(loc) for loc in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        logger.warning("%s %s -> invalid request: %s", request.method, request.url.path, details)
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request", "type": "validation_error", "details": details},
        )

    @app.exception_handler(PydanticValidationError)
    async def model_validation_handler(request: Request, exc: PydanticValidationError) -> JSONResponse:
        details = [
            {"field": ".".join(str(loc) for loc in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid data", "type": "validation_error", "details": details},
        )


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    """Build the FastAPI application around an engine instance."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    engine = engine or Engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await engine.start()
        yield
        await engine.shutdown()

    app = FastAPI(
        title="logsim API",
        description="Scenario and chain scheduling engine for synthetic log traffic",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)
    app.include_router(root_router)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
