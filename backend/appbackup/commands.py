"""
Typed command surface for the backup manager.

Callers send one of four tagged requests and always get back either the
typed success payload for that request or a ``CommandError`` carrying the
failure kind. The handler owns the single ``BackupManager`` of the process
and builds it lazily on the first request.
"""

import asyncio
from typing import Annotated, Any, Callable, List, Literal, Optional, Union, assert_never

from pydantic import BaseModel, Field, TypeAdapter

from .errors import BackupError, ErrorKind
from .logger import log_exception, logger
from .manager import BackupManager
from .models import DEFAULT_REASON, BackupEntry


# Requests
class CreateBackupRequest(BaseModel):
    kind: Literal["create"] = "create"
    reason: Optional[str] = None


class ListBackupsRequest(BaseModel):
    kind: Literal["list"] = "list"


class DeleteBackupRequest(BaseModel):
    kind: Literal["delete"] = "delete"
    name: str


class BackupSizeRequest(BaseModel):
    kind: Literal["size"] = "size"
    name: str


BackupRequest = Annotated[
    Union[CreateBackupRequest, ListBackupsRequest, DeleteBackupRequest, BackupSizeRequest],
    Field(discriminator="kind"),
]

_request_adapter: TypeAdapter[BackupRequest] = TypeAdapter(BackupRequest)


def parse_request(payload: dict[str, Any]) -> BackupRequest:
    """Validate a loosely-typed payload into a request. Raises ValidationError."""
    return _request_adapter.validate_python(payload)


# Results
class CreateBackupResponse(BaseModel):
    kind: Literal["create"] = "create"
    path: str


class ListBackupsResponse(BaseModel):
    kind: Literal["list"] = "list"
    backups: List[BackupEntry]


class DeleteBackupResponse(BaseModel):
    kind: Literal["delete"] = "delete"
    success: Literal[True] = True


class BackupSizeResponse(BaseModel):
    kind: Literal["size"] = "size"
    size: int


class CommandError(BaseModel):
    kind: Literal["error"] = "error"
    error: ErrorKind
    message: str


CommandResult = Annotated[
    Union[
        CreateBackupResponse,
        ListBackupsResponse,
        DeleteBackupResponse,
        BackupSizeResponse,
        CommandError,
    ],
    Field(discriminator="kind"),
]


@log_exception("Failed to initialize backup manager on first use")
async def _initialize_on_first_use(manager: BackupManager) -> None:
    await manager.initialize()


class BackupCommandHandler:
    """
    Request dispatcher owning the process-wide backup manager.

    Created once at host startup and handed to whatever receives requests.
    The manager itself is only constructed when the first request arrives.
    """

    def __init__(self, factory: Callable[[], BackupManager]):
        self._factory = factory
        self._manager: Optional[BackupManager] = None
        self._lock = asyncio.Lock()

    @property
    def manager(self) -> Optional[BackupManager]:
        return self._manager

    async def get_manager(self) -> BackupManager:
        """
        Return the shared manager, constructing it on first call.

        Initialization is attempted once; if it fails the error is logged and
        the manager is still returned, so individual operations report their
        own failures. A factory error propagates and is retried next call.
        """
        async with self._lock:
            if self._manager is None:
                manager = self._factory()
                await _initialize_on_first_use(manager)
                self._manager = manager
            return self._manager

    async def handle(self, request: BackupRequest) -> CommandResult:
        try:
            manager = await self.get_manager()
            match request:
                case CreateBackupRequest():
                    name = await manager.create_backup(request.reason or DEFAULT_REASON)
                    return CreateBackupResponse(path=name)
                case ListBackupsRequest():
                    return ListBackupsResponse(backups=await manager.list_backups())
                case DeleteBackupRequest():
                    await manager.delete_backup(request.name)
                    return DeleteBackupResponse()
                case BackupSizeRequest():
                    return BackupSizeResponse(size=await manager.get_backup_size(request.name))
                case _:
                    assert_never(request)
        except BackupError as e:
            logger.warning(f"Backup {request.kind} request failed: {e.kind.value}: {e}")
            return CommandError(error=e.kind, message=str(e))
        except Exception as e:
            logger.exception(f"Backup {request.kind} request failed unexpectedly: {e}")
            return CommandError(error=ErrorKind.INTERNAL, message=str(e))
