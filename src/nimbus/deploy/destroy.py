"""Tear down a deployment using only what the state document records."""

from __future__ import annotations

from collections.abc import Callable

from nimbus.deploy.registry import resource_from_record
from nimbus.deploy.state import StateManager
from nimbus.lib.errors import DeploymentError
from nimbus.lib.logging_config import get_logger
from nimbus.models.result import DestroyResult, ProvisionedResource
from nimbus.models.state import ResourceKind, ResourceRecord
from nimbus.resources.base import ResourceContext

logger = get_logger(__name__)

# APIs first (they delete their own route and authorizer functions), the
# shared role last.
DESTROY_ORDER: tuple[ResourceKind, ...] = (
    ResourceKind.API,
    ResourceKind.FUNCTION,
    ResourceKind.KV,
    ResourceKind.SQL,
    ResourceKind.STORAGE,
    ResourceKind.QUEUE,
    ResourceKind.TIMER,
    ResourceKind.SECRET,
    ResourceKind.PARAMETER,
    ResourceKind.ROLE,
)


def _summary(record: ResourceRecord) -> ProvisionedResource:
    return ProvisionedResource(kind=record.kind, name=record.name, arn=record.arn)


def destroy_deployment(
    state: StateManager,
    context: ResourceContext,
    *,
    project: str,
    force: bool = False,
    resolve_account: Callable[[], str] | None = None,
) -> DestroyResult:
    """Destroy every recorded resource of one stage and region.

    Stateful resources are kept and reported as skipped unless ``force`` is
    set. A record leaves the state document only after its remote teardown
    succeeded, so a failed run can simply be repeated.

    Args:
        state: State manager for the deployment
        context: Shared per-run collaborators
        project: Project name, for the result
        force: Also destroy data-bearing resources
        resolve_account: Fallback for documents without an account id

    Returns:
        What was destroyed and what was kept

    Raises:
        LockAcquisitionError: If another run holds the lock
        DeploymentError: If the provider rejects a teardown call
    """
    result = DestroyResult(project=project, stage=state.stage, region=state.region)
    state.acquire_lock()
    try:
        _destroy_recorded(state, context, result, project, force, resolve_account)
    except BaseException:
        # The teardown error wins over a failed unlock.
        try:
            state.release_lock()
        except DeploymentError as e:
            logger.error(f"Could not release lock {state.backend.lock_key}: {e}")
        raise
    state.release_lock()

    logger.info(
        f"Destroyed {len(result.destroyed)} resources, kept {len(result.skipped)}"
    )
    return result


def _destroy_recorded(
    state: StateManager,
    context: ResourceContext,
    result: DestroyResult,
    project: str,
    force: bool,
    resolve_account: Callable[[], str] | None,
) -> None:
    deployment = state.read()
    if deployment is None or not deployment.resources:
        logger.info(f"Nothing recorded for {project} ({state.key})")
        return

    if deployment.account_id:
        context.account_id = deployment.account_id
    elif resolve_account is not None:
        resolve_account()

    for kind in DESTROY_ORDER:
        for record in deployment.of_kind(kind):
            resource = resource_from_record(record, context)
            if resource.stateful and not force:
                logger.info(f"Keeping {kind.value} {record.name} (use --force to delete)")
                result.skipped.append(_summary(record))
                continue
            resource.destroy(force=force)
            state.remove(record.id)
            result.destroyed.append(_summary(record))
