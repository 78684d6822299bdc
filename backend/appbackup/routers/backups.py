"""Backup management endpoints"""

from typing import Any, Dict, List, Optional, TypeVar

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from pydantic import BaseModel, ValidationError

from ..commands import (
    BackupCommandHandler,
    BackupSizeRequest,
    BackupSizeResponse,
    CommandError,
    CommandResult,
    CreateBackupRequest,
    CreateBackupResponse,
    DeleteBackupRequest,
    DeleteBackupResponse,
    ListBackupsRequest,
    ListBackupsResponse,
    parse_request,
)
from ..errors import ErrorKind
from ..models import BackupEntry

T = TypeVar("T")

router = APIRouter(
    prefix="/backups",
    tags=["backups"],
)

_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.SOURCE_MISSING: status.HTTP_409_CONFLICT,
    ErrorKind.COPY_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.STORAGE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_command_handler(request: Request) -> BackupCommandHandler:
    return request.app.state.backup_commands


def _unwrap(result: CommandResult, expected: type[T]) -> T:
    if isinstance(result, CommandError):
        raise HTTPException(
            status_code=_STATUS_BY_KIND[result.error],
            detail={"kind": result.error.value, "message": result.message},
        )
    if not isinstance(result, expected):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "kind": ErrorKind.INTERNAL.value,
                "message": f"Unexpected {result.kind} result for {expected.__name__}",
            },
        )
    return result


class CreateBackupBody(BaseModel):
    reason: Optional[str] = None


class PathResponse(BaseModel):
    path: str


class SuccessResponse(BaseModel):
    success: bool


class SizeResponse(BaseModel):
    size: int


@router.post("", response_model=PathResponse)
async def create_backup(
    body: Optional[CreateBackupBody] = None,
    handler: BackupCommandHandler = Depends(get_command_handler),
):
    """Create a backup of the settings and database files"""
    reason = body.reason if body else None
    result = await handler.handle(CreateBackupRequest(reason=reason))
    return PathResponse(path=_unwrap(result, CreateBackupResponse).path)


@router.get("", response_model=List[BackupEntry])
async def list_backups(handler: BackupCommandHandler = Depends(get_command_handler)):
    """List backups, most recent first"""
    result = await handler.handle(ListBackupsRequest())
    return _unwrap(result, ListBackupsResponse).backups


@router.delete("/{name}", response_model=SuccessResponse)
async def delete_backup(
    name: str, handler: BackupCommandHandler = Depends(get_command_handler)
):
    """Delete a backup and all of its files"""
    result = await handler.handle(DeleteBackupRequest(name=name))
    return SuccessResponse(success=_unwrap(result, DeleteBackupResponse).success)


@router.get("/{name}/size", response_model=SizeResponse)
async def get_backup_size(
    name: str, handler: BackupCommandHandler = Depends(get_command_handler)
):
    """Get the combined size in bytes of a backup's files"""
    result = await handler.handle(BackupSizeRequest(name=name))
    return SizeResponse(size=_unwrap(result, BackupSizeResponse).size)


@router.post("/commands")
async def run_command(
    payload: Dict[str, Any] = Body(...),
    handler: BackupCommandHandler = Depends(get_command_handler),
):
    """Run a tagged backup request and return the tagged result as-is"""
    try:
        command = parse_request(payload)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        )
    result = await handler.handle(command)
    return result.model_dump(mode="json")
