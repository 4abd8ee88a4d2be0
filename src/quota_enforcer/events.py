"""Best-effort Kubernetes event recording for policy objects."""

import logging
from datetime import datetime, timezone
from typing import Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import COMPONENT_NAME, CRD_GROUP, CRD_KIND, CRD_VERSION
from .policy_cache import PolicySpec

logger = logging.getLogger(__name__)

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"


class EventRecorder:
    """Posts core/v1 Events about ResourceQuotaPolicy objects."""

    def __init__(self, core_api, component: str = COMPONENT_NAME):
        self.core_api = core_api
        self.component = component

    def record(self, policy: PolicySpec, event_type: str, reason: str, message: str) -> Optional[object]:
        """
        Record an event against a policy. Failures are logged, never raised.

        Returns:
            The created event or None
        """
        now = datetime.now(timezone.utc)
        event = client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                generate_name=f"{policy.name}.",
                namespace=policy.namespace,
            ),
            involved_object=client.V1ObjectReference(
                api_version=f"{CRD_GROUP}/{CRD_VERSION}",
                kind=CRD_KIND,
                name=policy.name,
                namespace=policy.namespace,
            ),
            type=event_type,
            reason=reason,
            message=message,
            source=client.V1EventSource(component=self.component),
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )

        try:
            return self.core_api.create_namespaced_event(namespace=policy.namespace, body=event)
        except ApiException as e:
            logger.warning(f"Failed to record {reason} event for {policy.namespace}/{policy.name}: {e.status} {e.reason}")
            return None
        except Exception as e:
            logger.warning(f"Failed to record {reason} event for {policy.namespace}/{policy.name}: {e}")
            return None
