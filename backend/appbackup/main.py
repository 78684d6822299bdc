from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .commands import BackupCommandHandler
from .config import Settings, settings
from .logger import logger
from .manager import BackupManager
from .routers import backups


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            f"Starting up, backups of {app_settings.settings_file} and "
            f"{app_settings.database_file} go to {app_settings.backup.directory}"
        )
        # The manager itself is built and initialized on the first request
        app.state.backup_commands = BackupCommandHandler(
            lambda: BackupManager.from_settings(app_settings)
        )
        logger.info("Startup complete.")
        yield

    app = FastAPI(lifespan=lifespan, title="App Backup")
    app.include_router(backups.router, prefix="/api")
    return app


app = create_app()
