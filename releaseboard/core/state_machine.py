"""Release lifecycle rules — pure functions, no I/O.

Enforces:
- Board column derived from status (Error/Blocked keep the stored column)
- Clear transitions only from the three "ready to proceed" statuses
- Scheduler work selection (Waiting* and Deploying*)
- Legal deployment paths at creation time
"""

from __future__ import annotations

from releaseboard.models.release import DeploymentItem, Environment, Release, ReleaseStatus


class InvalidEnvironmentError(ValueError):
    """Raised when an environment name is not recognised."""


class InvalidDeploymentPathError(ValueError):
    """Raised when a current -> target environment pair is not a legal path."""


class NotClearableError(ValueError):
    """Raised when a release is cleared from a status that cannot be cleared."""


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

_BOARD_COLUMN: dict[ReleaseStatus, Environment] = {
    ReleaseStatus.IN_DEVELOPMENT: Environment.DEVELOPMENT,
    ReleaseStatus.CLEARED_IN_DEVELOPMENT: Environment.DEVELOPMENT,
    ReleaseStatus.WAITING_FOR_STAGING: Environment.DEVELOPMENT,
    ReleaseStatus.WAITING_FOR_PRODUCTION: Environment.DEVELOPMENT,
    ReleaseStatus.DEPLOYING_TO_STAGING: Environment.STAGING,
    ReleaseStatus.READY_TO_TEST_IN_STAGING: Environment.STAGING,
    ReleaseStatus.CLEARED_IN_STAGING: Environment.STAGING,
    ReleaseStatus.WAITING_FOR_PRODUCTION_FROM_STAGING: Environment.STAGING,
    ReleaseStatus.DEPLOYING_TO_PRODUCTION: Environment.PRODUCTION,
    ReleaseStatus.READY_TO_TEST_IN_PRODUCTION: Environment.PRODUCTION,
    ReleaseStatus.CLEARED_IN_PRODUCTION: Environment.PRODUCTION,
}

# Statuses with no board column of their own.
ERROR_STATUSES: frozenset[ReleaseStatus] = frozenset(
    {ReleaseStatus.ERROR, ReleaseStatus.BLOCKED}
)

# Clear action: ready-to-proceed status -> next status.
# InDevelopment is resolved separately because it depends on skip_staging.
_CLEAR_TRANSITIONS: dict[ReleaseStatus, ReleaseStatus] = {
    ReleaseStatus.READY_TO_TEST_IN_STAGING: ReleaseStatus.WAITING_FOR_PRODUCTION_FROM_STAGING,
    ReleaseStatus.READY_TO_TEST_IN_PRODUCTION: ReleaseStatus.CLEARED_IN_PRODUCTION,
}

# Scheduler promotion: waiting status -> deploying status.
WAITING_TO_DEPLOYING: dict[ReleaseStatus, ReleaseStatus] = {
    ReleaseStatus.WAITING_FOR_STAGING: ReleaseStatus.DEPLOYING_TO_STAGING,
    ReleaseStatus.WAITING_FOR_PRODUCTION: ReleaseStatus.DEPLOYING_TO_PRODUCTION,
    ReleaseStatus.WAITING_FOR_PRODUCTION_FROM_STAGING: ReleaseStatus.DEPLOYING_TO_PRODUCTION,
}

# Deployment outcome: deploying status -> ready-to-test status.
DEPLOYING_TO_READY: dict[ReleaseStatus, ReleaseStatus] = {
    ReleaseStatus.DEPLOYING_TO_STAGING: ReleaseStatus.READY_TO_TEST_IN_STAGING,
    ReleaseStatus.DEPLOYING_TO_PRODUCTION: ReleaseStatus.READY_TO_TEST_IN_PRODUCTION,
}

WAITING_STATUSES: frozenset[ReleaseStatus] = frozenset(WAITING_TO_DEPLOYING)
DEPLOYING_STATUSES: frozenset[ReleaseStatus] = frozenset(DEPLOYING_TO_READY)

# Per-item success states: ready to test, or cleared further down the line.
ITEM_SUCCESS_STATUSES: frozenset[ReleaseStatus] = frozenset(
    {
        ReleaseStatus.READY_TO_TEST_IN_STAGING,
        ReleaseStatus.CLEARED_IN_STAGING,
        ReleaseStatus.READY_TO_TEST_IN_PRODUCTION,
        ReleaseStatus.CLEARED_IN_PRODUCTION,
    }
)

# Statuses that count as "active" for the one-release-per-client rule.
_INACTIVE_STATUSES: frozenset[ReleaseStatus] = frozenset(
    {ReleaseStatus.CLEARED_IN_PRODUCTION, ReleaseStatus.ERROR, ReleaseStatus.BLOCKED}
)

# (current, target) pairs accepted at creation time.
_LEGAL_PATHS: frozenset[tuple[Environment, Environment]] = frozenset(
    {
        (Environment.DEVELOPMENT, Environment.STAGING),
        (Environment.DEVELOPMENT, Environment.PRODUCTION),
        (Environment.STAGING, Environment.PRODUCTION),
    }
)

_TARGET_NAMES: dict[ReleaseStatus, str] = {
    ReleaseStatus.DEPLOYING_TO_STAGING: "staging",
    ReleaseStatus.DEPLOYING_TO_PRODUCTION: "production",
}


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def environment_of(
    status: ReleaseStatus, current_environment: Environment
) -> Environment:
    """Return the board column for *status*.

    Error and Blocked have no column of their own; they stay in the
    release's last known ``current_environment``.
    """
    if status in ERROR_STATUSES:
        return current_environment
    return _BOARD_COLUMN[status]


def next_status_when_cleared(
    status: ReleaseStatus, skip_staging: bool
) -> ReleaseStatus | None:
    """Return the status a release moves to when cleared, or None."""
    if status == ReleaseStatus.IN_DEVELOPMENT:
        if skip_staging:
            return ReleaseStatus.WAITING_FOR_PRODUCTION
        return ReleaseStatus.WAITING_FOR_STAGING
    return _CLEAR_TRANSITIONS.get(status)


def can_be_cleared(status: ReleaseStatus) -> bool:
    # skip_staging only selects the branch, never whether a branch exists
    return next_status_when_cleared(status, skip_staging=False) is not None


def should_process(status: ReleaseStatus) -> bool:
    """Whether the scheduler has work to do for a release in *status*."""
    return status in WAITING_STATUSES or status in DEPLOYING_STATUSES


def deploying_status_for(status: ReleaseStatus) -> ReleaseStatus:
    """Map a Waiting* status to its Deploying* status.

    Deploying* statuses map to themselves so the promotion step is
    idempotent.  Any other status raises ``ValueError``.
    """
    if status in DEPLOYING_STATUSES:
        return status
    try:
        return WAITING_TO_DEPLOYING[status]
    except KeyError:
        raise ValueError(f"{status.value} is neither a waiting nor a deploying status") from None


def ready_status_for(status: ReleaseStatus) -> ReleaseStatus:
    """Map a Deploying* status to the Ready* status reached on success."""
    try:
        return DEPLOYING_TO_READY[status]
    except KeyError:
        raise ValueError(f"{status.value} is not a deploying status") from None


def target_environment_name(status: ReleaseStatus) -> str:
    """Script argument ("staging" or "production") for a waiting/deploying status."""
    return _TARGET_NAMES[deploying_status_for(status)]


def is_item_success(status: ReleaseStatus) -> bool:
    return status in ITEM_SUCCESS_STATUSES


def is_item_terminal(status: ReleaseStatus) -> bool:
    """An item is finished once it has succeeded or failed."""
    return status in ITEM_SUCCESS_STATUSES or status == ReleaseStatus.ERROR


def is_active(status: ReleaseStatus) -> bool:
    """Whether a release in *status* still occupies its client's pipeline slot."""
    return status not in _INACTIVE_STATUSES


def validate_deployment_path(
    current: Environment, target: Environment, skip_staging: bool
) -> None:
    """Reject any (current, target) combination that is not a legal path.

    Development -> Production is accepted with or without ``skip_staging``;
    without it the release travels through staging on its way.
    """
    if (current, target) not in _LEGAL_PATHS:
        suffix = " (skip staging)" if skip_staging else ""
        raise InvalidDeploymentPathError(
            f"Invalid deployment path: {current.value} to {target.value}{suffix}"
        )


def parse_environment(name: str) -> Environment:
    """Parse an environment name case-insensitively."""
    normalized = name.strip().lower()
    for env in Environment:
        if env.value.lower() == normalized:
            return env
    raise InvalidEnvironmentError(f"Invalid environment: {name}")


def aggregate_progress(items: list[DeploymentItem]) -> float:
    """Percentage of items that have reached a success state."""
    if not items:
        return 0.0
    done = sum(1 for item in items if is_item_success(item.status))
    return done / len(items) * 100.0


def apply_status(release: Release, status: ReleaseStatus) -> Release:
    """Return a copy of *release* in *status*, moving its board column along.

    Error and Blocked leave ``current_environment`` untouched so the card
    stays in the column where the problem happened.
    """
    environment = environment_of(status, release.current_environment)
    return release.model_copy(
        update={"status": status, "current_environment": environment}
    )
