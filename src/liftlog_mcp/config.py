"""Configuration for the LiftLog MCP server."""

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class MCPConfig:
    """Where the database lives and how much a single query may return."""

    db_path: Path
    max_rows: int = 500

    @classmethod
    def from_db_path(cls, db_path: Path) -> "MCPConfig":
        """Build a config for db_path, reading LIFTLOG_MCP_MAX_ROWS if set."""
        max_rows = int(os.environ.get("LIFTLOG_MCP_MAX_ROWS", cls.max_rows))
        return cls(db_path=Path(db_path), max_rows=max_rows)

    def validate(self) -> None:
        """Raise ValueError if the config cannot be used."""
        if not Path(self.db_path).exists():
            raise ValueError(f"Database file not found: {self.db_path}")
        if self.max_rows < 1:
            raise ValueError(f"max_rows must be positive, got {self.max_rows}")
