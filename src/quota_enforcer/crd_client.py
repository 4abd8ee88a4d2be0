"""Client for the ResourceQuotaPolicy CRD."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import CRD_GROUP, CRD_PLURAL, CRD_VERSION
from .exceptions import StatusUpdateError

logger = logging.getLogger(__name__)


class ResourceQuotaPolicyClient:
    """Client for ResourceQuotaPolicy custom resources."""

    def __init__(self, custom_api=None):
        """
        Initialize the CRD client.

        Args:
            custom_api: CustomObjectsApi instance (created if omitted)
        """
        self.custom_api = custom_api if custom_api is not None else client.CustomObjectsApi()

    def get_policy(self, name: str, namespace: str) -> Optional[Dict[str, Any]]:
        """
        Get a specific ResourceQuotaPolicy.

        Returns:
            Policy object or None if not found

        Raises:
            ApiException: For errors other than 404
        """
        try:
            return self.custom_api.get_namespaced_custom_object(
                group=CRD_GROUP,
                version=CRD_VERSION,
                namespace=namespace,
                plural=CRD_PLURAL,
                name=name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def update_policy_status(
        self,
        name: str,
        namespace: str,
        status: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """
        Write the status subresource of a ResourceQuotaPolicy.

        Args:
            name: Policy name
            namespace: Policy namespace
            status: currentPods, cpuUsage, memoryUsage, violation, message

        Returns:
            The updated object, or None if the policy no longer exists

        Raises:
            StatusUpdateError: If the API call fails
        """
        try:
            current = self.get_policy(name, namespace)
            if current is None:
                logger.info(f"Policy {namespace}/{name} is gone, skipping status update")
                return None

            body = {
                "status": dict(
                    status,
                    lastReconciled=datetime.now(timezone.utc).isoformat(),
                )
            }

            updated = self.custom_api.patch_namespaced_custom_object_status(
                group=CRD_GROUP,
                version=CRD_VERSION,
                namespace=namespace,
                plural=CRD_PLURAL,
                name=name,
                body=body
            )
        except ApiException as e:
            raise StatusUpdateError(
                f"update status of {namespace}/{name}: {e.status} {e.reason}",
                namespace=namespace,
            ) from e

        logger.debug(f"Updated status for policy {namespace}/{name}: {status}")
        return updated
