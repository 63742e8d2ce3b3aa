"""Maps service instances to their BOSH deployments."""

from __future__ import annotations

import logging
from typing import List, Optional

from .backend import BoshBackend
from .contracts import InstanceDiskInfo
from .errors import AmbiguousDeploymentMatch, InstanceNotFound

logger = logging.getLogger(__name__)


class DeploymentResolver:
    """Resolve deployment names and disk inventory through the backend."""

    def __init__(self, backend: BoshBackend) -> None:
        self._backend = backend

    async def resolve_deployment_name(
        self, instance_guid: str, include_queued: bool = False
    ) -> str:
        """Return the single deployment whose name ends with ``instance_guid``.

        Raises:
            InstanceNotFound: no deployment name ends with the guid.
            AmbiguousDeploymentMatch: more than one does.
        """
        logger.info(f"Finding deployment name with instance id : '{instance_guid}'")
        names = await self._backend.get_deployment_names(include_queued)
        matches = [name for name in names if name.endswith(instance_guid)]
        if not matches:
            logger.warning(f"+-> Could not find a matching deployment for guid: {instance_guid}")
            raise InstanceNotFound(instance_guid)
        if len(matches) > 1:
            logger.warning(f"+-> Several deployments match guid {instance_guid}: {matches}")
            raise AmbiguousDeploymentMatch(instance_guid, matches)
        logger.info(f"+-> Found deployment '{matches[0]}' for '{instance_guid}'")
        return matches[0]

    async def get_instance_disks(
        self, deployment_name: str, jobs: Optional[List[str]] = None
    ) -> List[InstanceDiskInfo]:
        return await self._backend.get_persistent_disks(deployment_name, jobs or None)
