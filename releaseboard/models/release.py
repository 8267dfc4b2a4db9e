"""Release, deployment item, client and user models.

All models are Pydantic v2 and frozen.  State changes are made with
``model_copy(update=...)`` so every persisted record is a fresh value.
Enum values are the wire names; decoding an unknown name fails validation
instead of falling back to a default.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Environment(str, Enum):
    """Pipeline environments, in pipeline order."""

    DEVELOPMENT = "Development"
    STAGING = "Staging"
    PRODUCTION = "Production"

    @property
    def ordinal(self) -> int:
        return _ENVIRONMENT_ORDER[self]


_ENVIRONMENT_ORDER: dict[Environment, int] = {
    Environment.DEVELOPMENT: 0,
    Environment.STAGING: 1,
    Environment.PRODUCTION: 2,
}


class ReleaseStatus(str, Enum):
    """Lifecycle status of a release (and of each of its deployment items)."""

    # Development phase
    IN_DEVELOPMENT = "InDevelopment"
    CLEARED_IN_DEVELOPMENT = "ClearedInDevelopment"
    WAITING_FOR_STAGING = "WaitingForStaging"
    WAITING_FOR_PRODUCTION = "WaitingForProduction"

    # Staging phase
    DEPLOYING_TO_STAGING = "DeployingToStaging"
    READY_TO_TEST_IN_STAGING = "ReadyToTestInStaging"
    CLEARED_IN_STAGING = "ClearedInStaging"
    WAITING_FOR_PRODUCTION_FROM_STAGING = "WaitingForProductionFromStaging"

    # Production phase
    DEPLOYING_TO_PRODUCTION = "DeployingToProduction"
    READY_TO_TEST_IN_PRODUCTION = "ReadyToTestInProduction"
    CLEARED_IN_PRODUCTION = "ClearedInProduction"

    # Error states
    ERROR = "Error"
    BLOCKED = "Blocked"


class UserRole(str, Enum):
    VIEWER = "viewer"
    DEPLOYER = "deployer"
    ADMIN = "admin"


# Known deployment item kinds.  Each maps to one deployment script.
DEPLOYMENT_ITEM_KINDS: tuple[str, ...] = ("data", "solr", "app")


class DeploymentItem(BaseModel):
    """One independently executed unit of work within a release."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: ReleaseStatus = ReleaseStatus.IN_DEVELOPMENT
    logs: list[str] = []
    error: str | None = None

    def with_logs(self, lines: list[str]) -> DeploymentItem:
        """Return a copy with *lines* appended to the log."""
        if not lines:
            return self
        return self.model_copy(update={"logs": [*self.logs, *lines]})

    def with_error(self, message: str) -> DeploymentItem:
        """Return a copy in ERROR status.  The first recorded error is kept."""
        return self.model_copy(
            update={
                "status": ReleaseStatus.ERROR,
                "error": self.error if self.error is not None else message,
            }
        )


class Release(BaseModel):
    """One client's passage through the Development -> Production pipeline."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    title: str
    client_id: str
    current_environment: Environment = Environment.DEVELOPMENT
    target_environment: Environment = Environment.STAGING
    deployment_items: list[DeploymentItem] = []
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    scheduled_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: ReleaseStatus = ReleaseStatus.IN_DEVELOPMENT
    created_by: str = "unknown"
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    skip_staging: bool = False

    @field_validator("created_at", "scheduled_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("deployment_items")
    @classmethod
    def _unique_item_names(cls, items: list[DeploymentItem]) -> list[DeploymentItem]:
        seen: set[str] = set()
        for item in items:
            if item.name in seen:
                raise ValueError(f"Duplicate deployment item: {item.name!r}")
            seen.add(item.name)
        return items

    @classmethod
    def new(
        cls,
        title: str,
        client_id: str,
        current_environment: Environment,
        target_environment: Environment,
        item_names: list[str],
        *,
        scheduled_at: datetime | None = None,
        created_by: str = "unknown",
        skip_staging: bool = False,
    ) -> Release:
        """Build a fresh release in InDevelopment with zero progress."""
        return cls(
            title=title,
            client_id=client_id,
            current_environment=current_environment,
            target_environment=target_environment,
            deployment_items=[DeploymentItem(name=name) for name in item_names],
            scheduled_at=scheduled_at or datetime.now(timezone.utc),
            created_by=created_by,
            skip_staging=skip_staging,
        )

    @property
    def item_names(self) -> list[str]:
        return [item.name for item in self.deployment_items]

    def get_item(self, name: str) -> DeploymentItem | None:
        for item in self.deployment_items:
            if item.name == name:
                return item
        return None

    def replace_item(self, item: DeploymentItem) -> Release:
        """Return a copy with the same-named item swapped for *item*."""
        if self.get_item(item.name) is None:
            raise KeyError(f"Release {self.id} has no deployment item {item.name!r}")
        items = [item if it.name == item.name else it for it in self.deployment_items]
        return self.model_copy(update={"deployment_items": items})


class Client(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str


class User(BaseModel):
    """An authenticated actor, as stored by the login layer."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    avatar_url: str = ""
    role: UserRole = UserRole.VIEWER
