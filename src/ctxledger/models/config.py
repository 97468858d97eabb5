"""Configuration models for the ledger store and maintenance engines."""

from __future__ import annotations

from pydantic import BaseModel, Field


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.openclaw/lcm.db",
        description="Path to the SQLite ledger database. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode so readers never block behind a maintenance write."""

    connection_timeout: float = 30.0
    """Seconds SQLite waits on a locked database before raising."""

    staging_offset: int = Field(
        default=10_000_000,
        ge=1_000,
        description=(
            "Minimum offset of the temporary ordinal range used when shifting "
            "context items. The effective offset is raised above the current "
            "maximum ordinal if the ledger ever grows past it."
        ),
    )


class TransplantConfig(BaseModel):
    """Configuration for the transplant engine."""

    summary_id_prefix: str = Field(
        default="sum_",
        min_length=1,
        max_length=16,
        description="Prefix of minted summary identifiers (followed by 16 hex chars).",
    )

    max_id_attempts: int = Field(
        default=16,
        ge=1,
        le=1_000,
        description="How many times to regenerate an identifier that collides.",
    )

    conflict_check: bool = True
    """Refuse to transplant when the target already holds the source's top-level content."""


class LedgerConfig(BaseModel):
    """
    Top-level configuration for ctxledger.

    Example::

        config = LedgerConfig(
            store=StoreConfig(db_path="/tmp/lcm.db"),
            transplant=TransplantConfig(max_id_attempts=4),
        )
    """

    store: StoreConfig = Field(default_factory=StoreConfig)
    transplant: TransplantConfig = Field(default_factory=TransplantConfig)

    @classmethod
    def default(cls) -> LedgerConfig:
        """Return a config instance with all defaults."""
        return cls()
