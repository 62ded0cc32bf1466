import logging
from dataclasses import dataclass, field
from typing import Any

from rewardsync.api.service import RemoteChannelService
from rewardsync.core.dispatcher import EventDispatcher
from rewardsync.rewards.models import ManagedReward, RewardDescriptor
from rewardsync.rewards.registry import RewardRegistry

logger = logging.getLogger(__name__)

DIFFED_FIELDS: tuple[str, ...] = ("cost", "enabled", "permission", "auto_fulfills", "requires_input")


@dataclass
class RewardUpdate:
    """Fields of one reward that differ from the remote copy."""

    reward: ManagedReward
    fields: dict[str, Any]


@dataclass
class ReconcilePlan:
    """
    Outcome of comparing declared rewards with the remote reward list.

    Attributes:
        to_create: Declared rewards with no remote reward of the same title.
        to_update: Declared rewards whose remote copy has drifted.
        id_bindings: Title to remote ID for every declared reward found remotely.
    """

    to_create: list[ManagedReward] = field(default_factory=list)
    to_update: list[RewardUpdate] = field(default_factory=list)
    id_bindings: dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_update or self.id_bindings)


def diff_fields(local: ManagedReward, remote: RewardDescriptor) -> dict[str, Any]:
    """
    Return the declared values of every field that differs remotely.

    auto_fulfills is compared as the skip-queue flag the reward should carry on
    Twitch, so a gated auto-fulfilling reward matches a remote flag of False.
    """
    wanted = local.descriptor()
    changed: dict[str, Any] = {}
    for name in DIFFED_FIELDS:
        local_value = getattr(wanted, name)
        if local_value != getattr(remote, name):
            changed[name] = local_value
    return changed


def reconcile(declared: list[ManagedReward], remote: list[RewardDescriptor]) -> ReconcilePlan:
    """
    Compare declared rewards against the remote list.

    Args:
        declared: Managed rewards from the registry.
        remote: Rewards currently defined on the channel.

    Returns:
        ReconcilePlan with creations, partial updates and ID bindings.
    """
    plan = ReconcilePlan()
    remote_by_title = {descriptor.title: descriptor for descriptor in remote}

    for reward in declared:
        descriptor = remote_by_title.get(reward.title)
        if descriptor is None:
            plan.to_create.append(reward)
            continue
        if descriptor.id is None:
            logger.warning(f"Remote reward '{reward.title}' has no ID; leaving it alone")
            continue

        plan.id_bindings[reward.title] = descriptor.id
        changed = diff_fields(reward, descriptor)
        if changed:
            plan.to_update.append(RewardUpdate(reward=reward, fields=changed))

    return plan


class Reconciler:
    """Aligns declared managed rewards with the channel once the transport is ready."""

    def __init__(self, registry: RewardRegistry, service: RemoteChannelService, dispatcher: EventDispatcher) -> None:
        self.registry = registry
        self.service = service
        self.dispatcher = dispatcher
        self.last_plan: ReconcilePlan | None = None

    def run(self) -> None:
        """
        Fetch the remote reward list and schedule creates and updates.

        Does nothing when no managed rewards are declared. Failures are logged and
        never retried; affected rewards stay as they are until the next start.
        """
        declared = self.registry.managed_rewards()
        if not declared:
            logger.info("No managed rewards declared; skipping reconciliation")
            self.last_plan = ReconcilePlan()
            return

        logger.info(f"Reconciling {len(declared)} managed rewards")
        self.dispatcher.run_remote(
            self.service.list_rewards(),
            on_success=self._apply,
            on_error=lambda e: logger.error(f"Could not fetch channel rewards: {e}"),
        )

    def _apply(self, remote: list[RewardDescriptor]) -> None:
        plan = reconcile(self.registry.managed_rewards(), remote)
        self.last_plan = plan

        for title, remote_id in plan.id_bindings.items():
            reward = self.registry.by_title(title)
            if reward is None:
                continue
            try:
                self.registry.bind_id(reward, remote_id)
            except ValueError as e:
                logger.error(f"Cannot bind reward '{title}': {e}")

        for update in plan.to_update:
            self._update(update)

        for reward in plan.to_create:
            self._create(reward)

        logger.info(
            f"Reconciliation planned: {len(plan.to_create)} to create, "
            f"{len(plan.to_update)} to update, {len(plan.id_bindings)} bound"
        )

    def _create(self, reward: ManagedReward) -> None:
        def created(remote_id: str) -> None:
            self.registry.bind_id(reward, remote_id)
            logger.info(f"Created reward '{reward.title}'")

        def failed(error: Exception) -> None:
            logger.error(
                f"Could not create managed reward '{reward.title}': {error}. "
                "A reward with this title may already exist but not be manageable by this client; "
                "delete it on the Twitch dashboard to let it be managed here."
            )

        self.dispatcher.run_remote(self.service.create_reward(reward.descriptor()), created, failed)

    def _update(self, update: RewardUpdate) -> None:
        reward = update.reward
        if reward.remote_id is None:
            return

        self.dispatcher.run_remote(
            self.service.update_reward(reward.remote_id, update.fields),
            on_success=lambda _: logger.info(f"Updated reward '{reward.title}': {sorted(update.fields)}"),
            on_error=lambda e: logger.error(f"Could not update reward '{reward.title}': {e}"),
        )
