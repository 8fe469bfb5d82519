"""Resource lifecycle manager — create/update/delete for one identity.

Per identity the paired objects move through::

    absent -> creating -> running -> deleting -> absent
                          running -> updating -> running

Each operation starts from a fixed state and logs every step at debug
level; ``transition`` rejects anything outside ``ALLOWED_TRANSITIONS``,
so a ``LifecycleError`` means a bug in this module, not a cluster
condition.

Ordering rules:

- create: credentials secret first, then the workload. An existing
  secret of the same name is replaced, so a retried create is safe. A
  workload that already exists under the same name is adopted.
- delete: workload first, then the secret. Objects that are already
  gone count as deleted. Secrets whose workload is gone are found by
  their labels and removed too.
- update: patch only the container image of a running workload.

Nothing is remembered between calls; the cluster is the only state.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Mapping

from collector_orchestrator.cluster import objects
from collector_orchestrator.cluster.client import CONFLICT, ClusterClient, ClusterError
from collector_orchestrator.labels import (
    DIGEST_SELECTOR,
    LABEL_COLLECTOR,
    LABEL_DIGEST,
    LABEL_GROUPING,
    MARKER_SELECTOR,
)
from collector_orchestrator.models import (
    ALLOWED_TRANSITIONS,
    Grouping,
    ObservedWorkload,
    WorkloadSpec,
    WorkloadState,
)

logger = logging.getLogger(__name__)


class LifecycleError(Exception):
    """Raised on an illegal workload state transition (a caller bug)."""


class MissingGroupingError(Exception):
    """Raised when a grouped workload's config map does not exist."""


def transition(key: str, current: WorkloadState, target: WorkloadState) -> WorkloadState:
    """Check and log one state change for the object pair behind *key*."""
    if target not in ALLOWED_TRANSITIONS[current]:
        raise LifecycleError(f"{key}: illegal transition {current} -> {target}")
    logger.debug("%s: %s -> %s", key, current, target)
    return target


class ResourceLifecycleManager:
    """Owns the cluster objects paired with each identity."""

    def __init__(
        self,
        cluster: ClusterClient,
        image_registry: str | None = None,
        ingress_api: str | None = None,
        collector_env: Mapping[str, str] | None = None,
    ) -> None:
        self._cluster = cluster
        self._image_registry = image_registry
        self._ingress_api = ingress_api
        self._collector_env = dict(collector_env or {})

    # --- Single-source workloads ---

    def create(self, identity: str, spec: WorkloadSpec) -> str:
        """Create the secret and workload for *identity*. Returns the workload name."""
        state = transition(identity, WorkloadState.ABSENT, WorkloadState.CREATING)
        body = objects.build_deployment(
            spec, identity, image_registry=self._image_registry, ingress_api=self._ingress_api,
        )
        name = body["metadata"]["name"]
        logger.info(
            "Creating objects for source %s with digest %s", spec.source_id, identity,
        )

        secret = objects.secret_name(name)
        self._cluster.apply_secret(
            secret,
            spec.credential.secret_data(),
            objects.workload_labels(identity, spec.source_type),
        )
        try:
            self._cluster.create_deployment(body)
        except ClusterError as exc:
            if exc.status != CONFLICT:
                # Keep "secret exists iff workload exists"
                transition(identity, state, WorkloadState.ABSENT)
                self._discard_secret(secret)
                raise
            # The name carries the source ID and identity prefix
            logger.warning("Workload %s already exists, restoring its labels", name)
            self._cluster.patch_deployment(
                name, objects.build_label_patch(body["metadata"]["labels"]),
            )

        transition(identity, state, WorkloadState.RUNNING)
        return name

    def _discard_secret(self, name: str) -> None:
        try:
            self._cluster.delete_secret(name)
        except ClusterError as exc:
            logger.warning("Could not remove secret %s after failed create: %s", name, exc)

    def find_workload(self, identity: str) -> ObservedWorkload | None:
        """Return the managed workload carrying *identity*, if any."""
        selector = f"{LABEL_DIGEST}={identity}"
        for workload in self._cluster.list_deployments(selector):
            if workload.labels.get(LABEL_COLLECTOR) == "true":
                return workload
        return None

    def delete(self, identity: str) -> bool:
        """Delete the workload and secret for *identity*.

        When no workload carries the identity any more, secrets labeled
        with it are still removed. Returns ``False`` when neither object
        existed (already converged).
        """
        workload = self.find_workload(identity)
        if workload is None:
            removed = False
            for secret in self._cluster.list_secrets(f"{DIGEST_SELECTOR}={identity}"):
                logger.info("Removing secret %s left without a workload", secret.name)
                removed = self._cluster.delete_secret(secret.name) or removed
            return removed

        state = transition(identity, WorkloadState.RUNNING, WorkloadState.DELETING)
        logger.info("Removing objects for deployment %s", workload.name)
        self._cluster.delete_deployment(workload.name)
        self._cluster.delete_secret(objects.secret_name(workload.name))
        transition(identity, state, WorkloadState.ABSENT)
        return True

    def remove_stray_secrets(
        self, label: str, keep: Collection[str],
    ) -> tuple[list[str], list[str]]:
        """Delete managed secrets whose *label* value is not in *keep*.

        Picks up credentials left behind by a delete that failed halfway or
        by a workload removed out of band. Returns the label values of the
        removed and of the failed secrets.
        """
        removed: list[str] = []
        failed: list[str] = []
        for secret in self._cluster.list_secrets(f"{MARKER_SELECTOR},{label}"):
            key = secret.labels.get(label)
            if not key or key in keep:
                continue
            logger.info("Removing stray secret %s", secret.name)
            try:
                self._cluster.delete_secret(secret.name)
            except ClusterError as exc:
                logger.error("Failed to remove stray secret %s: %s", secret.name, exc)
                failed.append(key)
            else:
                removed.append(key)
        return removed, failed

    def update_image(self, workload: ObservedWorkload, image: str) -> None:
        """Patch the container image of a running workload in place."""
        key = workload.identity or workload.grouping_uid or workload.name
        state = transition(key, WorkloadState.RUNNING, WorkloadState.UPDATING)
        logger.info("Updating image of %s: %s -> %s", workload.name, workload.image, image)
        self._cluster.patch_deployment(workload.name, objects.build_image_patch(image))
        transition(key, state, WorkloadState.RUNNING)

    # --- Grouped workloads ---

    def apply_grouping(self, grouping: Grouping, specs: Mapping[str, WorkloadSpec]) -> None:
        """Write the grouping's config map and credentials secret."""
        name = objects.grouped_workload_name(grouping)
        labels = objects.grouping_labels(grouping)
        member_specs = dict(specs)
        self._cluster.apply_secret(
            objects.secret_name(name),
            objects.grouping_secret_data(grouping, member_specs),
            labels,
        )
        self._cluster.apply_config_map(
            objects.config_map_name(name),
            objects.grouping_config_data(grouping, member_specs),
            labels,
        )
        logger.info(
            "Applied grouping %s (%s, %d member(s))",
            grouping.uid,
            grouping.source_type,
            len(grouping.members),
        )

    def create_grouped_workload(self, grouping: Grouping, image: str) -> str:
        """Create the shared workload for a grouping.

        Raises:
            MissingGroupingError: If the grouping's config map is gone or
                the grouping has no members left.
        """
        if grouping.is_empty:
            raise MissingGroupingError(f"Grouping {grouping.uid} has no active members")
        selector = f"{LABEL_GROUPING}={grouping.uid}"
        if not self._cluster.list_config_maps(selector):
            raise MissingGroupingError(f"No config map for grouping {grouping.uid}")

        state = transition(grouping.uid, WorkloadState.ABSENT, WorkloadState.CREATING)
        body = objects.build_grouped_deployment(
            grouping, image, ingress_api=self._ingress_api, extra_env=self._collector_env,
        )
        logger.info("Creating grouped workload %s", body["metadata"]["name"])
        self._cluster.create_deployment(body)
        transition(grouping.uid, state, WorkloadState.RUNNING)
        return body["metadata"]["name"]

    def delete_grouped_workload(self, workload: ObservedWorkload) -> None:
        """Delete a grouped workload, leaving its grouping objects alone."""
        logger.info("Removing grouped workload %s", workload.name)
        self._cluster.delete_deployment(workload.name)

    def delete_grouping(self, grouping: Grouping) -> None:
        """Delete a grouping: workload, then secret, then config map.

        The config map goes last: while it exists the grouping is still
        observed, so a half-finished delete is retried on the next tick.
        """
        key = grouping.uid
        state = transition(key, WorkloadState.RUNNING, WorkloadState.DELETING)
        name = objects.grouped_workload_name(grouping)
        logger.info("Removing grouping %s (%s)", grouping.uid, grouping.source_type)
        self._cluster.delete_deployment(name)
        self._cluster.delete_secret(objects.secret_name(name))
        self._cluster.delete_config_map(objects.config_map_name(name))
        transition(key, state, WorkloadState.ABSENT)
