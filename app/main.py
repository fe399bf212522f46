import logging
from contextlib import asynccontextmanager
from typing import Dict, List

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Path, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.auth import require_auth_token
from app.core.cache import DecisionCache, get_definition_cache
from app.core.db import get_db, init_db
from app.core.errors import (
    DefinitionError,
    ExperimentNotFoundError,
    ExperimentNotRunningError,
    FeatureFlagNotFoundError,
)
from app.core.log_config import configure_logging
from app.core.settings import config_settings
from app.models.schemas.assignment import AssignmentModel
from app.models.schemas.experiment import (
    ExperimentCreateModel,
    ExperimentModel,
    ExperimentUpdateModel,
)
from app.models.schemas.feature_flag import (
    FeatureFlagCreateModel,
    FeatureFlagModel,
    FeatureFlagUpdateModel,
    FlagBatchEvaluationRequest,
    FlagEvaluationModel,
)
from app.services.experiment_service import ExperimentService
from app.services.feature_flag_service import FeatureFlagService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(config_settings.LOG_LEVEL)
    yield


app = FastAPI(
    title="Experimentation service",
    description="Deterministic experiment assignment and feature flag rollout.",
    version="0.1.0",
    dependencies=[Depends(require_auth_token)],
    lifespan=lifespan,
)

router = APIRouter(prefix="/api/v1/config")


# --- Error mapping ---


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(DefinitionError)
async def definition_error_handler(request: Request, exc: DefinitionError):
    logger.warning(f"Rejected definition write on {request.url.path}: {exc}")
    return _error_response(status.HTTP_400_BAD_REQUEST, exc)


@app.exception_handler(ExperimentNotFoundError)
async def experiment_not_found_handler(request: Request, exc: ExperimentNotFoundError):
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(FeatureFlagNotFoundError)
async def flag_not_found_handler(request: Request, exc: FeatureFlagNotFoundError):
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(ExperimentNotRunningError)
async def experiment_not_running_handler(request: Request, exc: ExperimentNotRunningError):
    logger.warning(f"Cannot assign on {request.url.path}: {exc}")
    return _error_response(status.HTTP_409_CONFLICT, exc)


# --- Experiments ---


@router.get(
    "/experiments/active",
    response_model=List[ExperimentModel],
    summary="List running experiments",
)
def get_active_experiments(
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    return ExperimentService(db, cache).list_active_experiments()


@router.get(
    "/experiments/assignments",
    response_model=List[AssignmentModel],
    summary="Get all experiment assignments of a user",
)
def get_user_assignments(
    user_id: str = Query(..., min_length=1, description="The ID of the user."),
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    return ExperimentService(db, cache).get_user_assignments(user_id)


@router.get(
    "/experiments/{experiment_key}",
    response_model=ExperimentModel,
    summary="Get experiment by key",
)
def get_experiment(
    experiment_key: str = Path(..., description="The key of the experiment."),
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    experiment = ExperimentService(db, cache).get_experiment(experiment_key)
    if experiment is None:
        raise ExperimentNotFoundError(experiment_key)
    return experiment


@router.post(
    "/experiments",
    response_model=ExperimentModel,
    status_code=status.HTTP_201_CREATED,
    summary="Create an experiment",
)
def post_experiment(
    experiment_data: ExperimentCreateModel,
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    return ExperimentService(db, cache).create_experiment(experiment_data)


@router.put(
    "/experiments/{experiment_key}",
    response_model=ExperimentModel,
    summary="Update an experiment",
)
def put_experiment(
    experiment_data: ExperimentUpdateModel,
    experiment_key: str = Path(..., description="The key of the experiment."),
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    return ExperimentService(db, cache).update_experiment(experiment_key, experiment_data)


@router.delete(
    "/experiments/{experiment_key}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an experiment",
)
def delete_experiment(
    experiment_key: str = Path(..., description="The key of the experiment."),
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    ExperimentService(db, cache).delete_experiment(experiment_key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/experiments/{experiment_key}/assign",
    response_model=AssignmentModel,
    status_code=status.HTTP_200_OK,
    summary="Assign a user to an experiment variant",
    responses={204: {"description": "User excluded from the experiment by traffic sampling"}},
)
def assign_user_to_experiment(
    experiment_key: str = Path(..., description="The key of the experiment."),
    user_id: str = Query(..., min_length=1, description="The ID of the user."),
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    """
    Returns the user's variant. The first call persists the assignment; every
    later call returns the same one.
    """
    assignment = ExperimentService(db, cache).assign_user_to_experiment(experiment_key, user_id)
    if assignment is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return assignment


# --- Feature flags ---


@router.get("/flags", response_model=List[FeatureFlagModel], summary="List feature flags")
def get_flags(
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    return FeatureFlagService(db, cache).list_flags()


@router.get(
    "/flags/enabled",
    response_model=List[FeatureFlagModel],
    summary="List enabled feature flags",
)
def get_enabled_flags(
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    return FeatureFlagService(db, cache).list_flags(enabled_only=True)


@router.post(
    "/flags/evaluate",
    response_model=Dict[str, bool],
    summary="Evaluate several feature flags for one user",
)
def evaluate_flags(
    evaluation_request: FlagBatchEvaluationRequest,
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    return FeatureFlagService(db, cache).evaluate_flags(
        evaluation_request.user_id,
        evaluation_request.flag_keys,
        evaluation_request.context,
    )


@router.get("/flags/{flag_key}", response_model=FeatureFlagModel, summary="Get feature flag by key")
def get_flag(
    flag_key: str = Path(..., description="The key of the feature flag."),
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    flag = FeatureFlagService(db, cache).get_flag(flag_key)
    if flag is None:
        raise FeatureFlagNotFoundError(flag_key)
    return flag


@router.get(
    "/flags/{flag_key}/evaluate",
    response_model=FlagEvaluationModel,
    summary="Evaluate a feature flag for one user",
)
def evaluate_flag(
    flag_key: str = Path(..., description="The key of the feature flag."),
    user_id: str = Query(..., min_length=1, description="The ID of the user."),
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    enabled = FeatureFlagService(db, cache).evaluate_flag(flag_key, user_id)
    return FlagEvaluationModel(flag_key=flag_key, user_id=user_id, enabled=enabled)


@router.post(
    "/flags",
    response_model=FeatureFlagModel,
    status_code=status.HTTP_201_CREATED,
    summary="Create a feature flag",
)
def post_flag(
    flag_data: FeatureFlagCreateModel,
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    return FeatureFlagService(db, cache).create_flag(flag_data)


@router.put("/flags/{flag_key}", response_model=FeatureFlagModel, summary="Update a feature flag")
def put_flag(
    flag_data: FeatureFlagUpdateModel,
    flag_key: str = Path(..., description="The key of the feature flag."),
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    return FeatureFlagService(db, cache).update_flag(flag_key, flag_data)


@router.delete(
    "/flags/{flag_key}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a feature flag",
)
def delete_flag(
    flag_key: str = Path(..., description="The key of the feature flag."),
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    FeatureFlagService(db, cache).delete_flag(flag_key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/flags/{flag_key}/toggle",
    response_model=FeatureFlagModel,
    summary="Flip the enabled state of a feature flag",
)
def toggle_flag(
    flag_key: str = Path(..., description="The key of the feature flag."),
    db: Session = Depends(get_db),
    cache: DecisionCache = Depends(get_definition_cache),
):
    return FeatureFlagService(db, cache).toggle_flag(flag_key)


app.include_router(router)


# Entry point for local development
if __name__ == "__main__":
    configure_logging(config_settings.LOG_LEVEL)
    init_db()
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
