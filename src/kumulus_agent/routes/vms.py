"""VM routes for provisioning and controlling tenant environments."""

import logging
from collections.abc import Awaitable
from typing import Annotated, Any, TypeVar

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from kumulus_agent.core.errors import ExternalProcessError, ValidationError
from kumulus_agent.models.common import EnvironmentStatus
from kumulus_agent.models.environment import REQUIRED_REQUEST_FIELDS, EnvironmentRequest
from kumulus_agent.services.environment import EnvironmentManager, get_environment_manager

logger = logging.getLogger(__name__)

EnvironmentManagerDep = Annotated[EnvironmentManager, Depends(get_environment_manager)]

router = APIRouter(tags=["vms"])

T = TypeVar("T")


# -----------------------------------------------------------------------------
# Request/Response Models
# -----------------------------------------------------------------------------


class CreateVmResponse(BaseModel):
    """Response for a successfully created VM."""

    vm_id: str = Field(alias="vmId")
    ssh_port: int = Field(alias="sshPort")
    username: str
    status: EnvironmentStatus

    class Config:
        populate_by_name = True


class MessageResponse(BaseModel):
    """Response for best-effort lifecycle operations."""

    message: str


class StatusResponse(BaseModel):
    """Response for a VM status lookup."""

    status: EnvironmentStatus


class LogsResponse(BaseModel):
    """Response carrying a VM's captured output."""

    logs: str


class ErrorResponse(BaseModel):
    """Error body returned by every VM route."""

    error: str
    details: Any = None


ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def error_response(status_code: int, error: str, details: Any = None) -> JSONResponse:
    """Build an ``{error, details}`` JSON response."""
    content: dict[str, Any] = {"error": error}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


async def read_json_object(request: Request) -> dict[str, Any]:
    """Decode the request body as a JSON object.

    Raises:
        ValidationError: If the body is not a JSON object
    """
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


async def run_lifecycle_operation(
    label: str, operation: Awaitable[T]
) -> T | JSONResponse:
    """Await a lifecycle operation and map errors onto ``{error, details}``."""
    try:
        return await operation
    except ValidationError as e:
        return error_response(status.HTTP_400_BAD_REQUEST, e.message)
    except ExternalProcessError as e:
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, e.message, e.details)
    except Exception as e:
        logger.exception(f"VM {label} failed")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, f"VM {label} failed", str(e))


# -----------------------------------------------------------------------------
# Create
# -----------------------------------------------------------------------------


@router.post(
    "/create-vm",
    response_model=CreateVmResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_vm(
    request: Request,
    manager: EnvironmentManagerDep,
) -> CreateVmResponse | JSONResponse:
    """Provision a tenant environment.

    Body: ``{username, sshKey, cpu, memory, disk}``; every field is required.
    Builds a per-tenant image, allocates an SSH port and starts the container.
    Build and run failures return 500 with the captured stdout/stderr.
    """
    try:
        body = await read_json_object(request)
    except ValidationError as e:
        return error_response(status.HTTP_400_BAD_REQUEST, e.message)

    for field in REQUIRED_REQUEST_FIELDS:
        if not body.get(field):
            logger.error(f"Missing required parameter: {field}")
            return error_response(
                status.HTTP_400_BAD_REQUEST, f"Missing required parameter: {field}"
            )

    try:
        env_request = EnvironmentRequest.model_validate(body)
    except PydanticValidationError as e:
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "Invalid request parameters",
            e.errors(include_url=False, include_context=False, include_input=False),
        )

    logger.info(f"Received VM creation request for user: {env_request.username}")
    result = await run_lifecycle_operation(
        "creation", manager.create_environment(env_request)
    )
    if isinstance(result, JSONResponse):
        return result

    return CreateVmResponse(
        vmId=result.id,
        sshPort=result.ssh_port,
        username=result.owner,
        status=result.status,
    )


# -----------------------------------------------------------------------------
# Lifecycle Endpoints
# -----------------------------------------------------------------------------


@router.post("/stop-vm", response_model=MessageResponse, responses=ERROR_RESPONSES)
async def stop_vm(request: Request, manager: EnvironmentManagerDep) -> MessageResponse | JSONResponse:
    """Stop a VM by the vmId returned from /create-vm."""
    body = await run_lifecycle_operation("stop", read_json_object(request))
    if isinstance(body, JSONResponse):
        return body

    logger.info(f"Received stop VM request for ID: {body.get('vmId')}")
    result = await run_lifecycle_operation("stop", manager.stop_environment(body.get("vmId")))
    if isinstance(result, JSONResponse):
        return result
    return MessageResponse(message="VM stopped successfully")


@router.post("/start-vm", response_model=MessageResponse, responses=ERROR_RESPONSES)
async def start_vm(request: Request, manager: EnvironmentManagerDep) -> MessageResponse | JSONResponse:
    """Start a stopped VM."""
    body = await run_lifecycle_operation("start", read_json_object(request))
    if isinstance(body, JSONResponse):
        return body

    logger.info(f"Received start VM request for ID: {body.get('vmId')}")
    result = await run_lifecycle_operation("start", manager.start_environment(body.get("vmId")))
    if isinstance(result, JSONResponse):
        return result
    return MessageResponse(message="VM started successfully")


@router.post("/get-vm-status", response_model=StatusResponse, responses=ERROR_RESPONSES)
async def get_vm_status(request: Request, manager: EnvironmentManagerDep) -> StatusResponse | JSONResponse:
    """Report a VM's status as seen by the container engine.

    A VM the engine no longer knows about is reported as ``Destroyed``.
    """
    body = await run_lifecycle_operation("status retrieval", read_json_object(request))
    if isinstance(body, JSONResponse):
        return body

    logger.info(f"Received get VM status request for ID: {body.get('vmId')}")
    result = await run_lifecycle_operation(
        "status retrieval", manager.get_status(body.get("vmId"))
    )
    if isinstance(result, JSONResponse):
        return result
    return StatusResponse(status=result)


@router.post("/get-vm-logs", response_model=LogsResponse, responses=ERROR_RESPONSES)
async def get_vm_logs(request: Request, manager: EnvironmentManagerDep) -> LogsResponse | JSONResponse:
    """Return a VM's captured standard output."""
    body = await run_lifecycle_operation("logs retrieval", read_json_object(request))
    if isinstance(body, JSONResponse):
        return body

    result = await run_lifecycle_operation("logs retrieval", manager.get_logs(body.get("vmId")))
    if isinstance(result, JSONResponse):
        return result
    return LogsResponse(logs=result)


@router.post("/delete-vm", response_model=MessageResponse, responses=ERROR_RESPONSES)
async def delete_vm(request: Request, manager: EnvironmentManagerDep) -> MessageResponse | JSONResponse:
    """Force-remove a VM."""
    body = await run_lifecycle_operation("deletion", read_json_object(request))
    if isinstance(body, JSONResponse):
        return body

    logger.info(f"Received delete VM request for ID: {body.get('vmId')}")
    result = await run_lifecycle_operation("deletion", manager.delete_environment(body.get("vmId")))
    if isinstance(result, JSONResponse):
        return result
    return MessageResponse(message="VM deleted successfully")
