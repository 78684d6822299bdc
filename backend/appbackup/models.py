from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

DEFAULT_REASON = "manual"


class BackupFile(BaseModel):
    """One captured artifact inside a backup entry"""

    path: str  # POSIX path relative to the entry directory
    size: int
    sha256: str


class BackupEntry(BaseModel):
    """Pydantic model for a promoted backup entry, also its on-disk manifest"""

    name: str
    created_at: datetime
    reason: str = DEFAULT_REASON
    app_version: Optional[str] = None
    files: List[BackupFile] = Field(default_factory=list)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)
