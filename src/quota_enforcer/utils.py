"""Utility functions for resource quantities and Kubernetes object access."""

from decimal import Decimal, ROUND_CEILING
from typing import Any, Iterable, List, Optional, Tuple

from kubernetes.utils import parse_quantity

from .config import TERMINAL_POD_PHASES

ZERO = Decimal(0)

_BINARY_SUFFIXES = (
    ("Ei", 1024 ** 6),
    ("Pi", 1024 ** 5),
    ("Ti", 1024 ** 4),
    ("Gi", 1024 ** 3),
    ("Mi", 1024 ** 2),
    ("Ki", 1024),
)

_DECIMAL_SUFFIXES = (
    ("E", 1000 ** 6),
    ("P", 1000 ** 5),
    ("T", 1000 ** 4),
    ("G", 1000 ** 3),
    ("M", 1000 ** 2),
    ("k", 1000),
)


def to_quantity(value: Any) -> Decimal:
    """
    Parse a Kubernetes quantity into an exact Decimal.

    Empty values parse as zero. Invalid strings raise ValueError.

    Examples:
        "500m" -> Decimal("0.5")
        "2Gi" -> Decimal("2147483648")
    """
    if value is None or value == "":
        return ZERO
    return parse_quantity(value)


def format_cpu(cores: Decimal) -> str:
    """
    Format CPU cores to a Kubernetes quantity string.

    Examples:
        Decimal("2") -> "2"
        Decimal("0.8") -> "800m"
        Decimal("1.5") -> "1500m"
    """
    if cores == cores.to_integral_value():
        return str(int(cores))
    millicores = cores * 1000
    if millicores == millicores.to_integral_value():
        return f"{int(millicores)}m"
    micro = (cores * 1000000).to_integral_value(rounding=ROUND_CEILING)
    return f"{int(micro)}u"


def format_memory(bytes_value: Decimal) -> str:
    """
    Format a byte count to a Kubernetes memory string.

    Prefers the largest exact binary suffix, then decimal, then plain bytes.
    """
    value = int(bytes_value.to_integral_value(rounding=ROUND_CEILING))
    if value == 0:
        return "0"
    for suffixes in (_BINARY_SUFFIXES, _DECIMAL_SUFFIXES):
        for suffix, multiplier in suffixes:
            if value % multiplier == 0:
                return f"{value // multiplier}{suffix}"
    return str(value)


def object_key(obj: Any) -> Tuple[str, str]:
    """Return (namespace, name) for a typed model or an untyped dict."""
    namespace, name, _ = object_meta(obj)
    return namespace, name


def object_meta(obj: Any) -> Tuple[str, str, str]:
    """Return (namespace, name, resourceVersion) for a typed model or dict."""
    if isinstance(obj, dict):
        metadata = obj.get("metadata") or {}
        return (
            metadata.get("namespace") or "",
            metadata.get("name") or "",
            metadata.get("resourceVersion") or "",
        )

    metadata = getattr(obj, "metadata", None)
    if metadata is None:
        return "", "", ""
    return (
        metadata.namespace or "",
        metadata.name or "",
        metadata.resource_version or "",
    )


def list_items(response: Any) -> List[Any]:
    """Return the items of a list response (typed list or dict)."""
    if isinstance(response, dict):
        return list(response.get("items") or [])
    return list(response.items or [])


def list_resource_version(response: Any) -> str:
    """Return the collection resourceVersion of a list response."""
    if isinstance(response, dict):
        return (response.get("metadata") or {}).get("resourceVersion") or ""
    metadata = getattr(response, "metadata", None)
    if metadata is None:
        return ""
    return metadata.resource_version or ""


def is_terminal(pod) -> bool:
    """Check if a pod has finished and no longer consumes quota."""
    status = pod.status
    return bool(status and status.phase in TERMINAL_POD_PHASES)


def live_pods(pods: Iterable[Any]) -> List[Any]:
    """Filter out pods in a terminal phase."""
    return [pod for pod in pods if not is_terminal(pod)]


def pod_requests(pod) -> Tuple[Decimal, Decimal]:
    """
    Sum the CPU and memory requests of all containers in a pod.

    Returns:
        Tuple of (cpu_cores, memory_bytes)
    """
    cpu = ZERO
    memory = ZERO

    spec = pod.spec
    if spec is None:
        return cpu, memory

    for container in spec.containers or []:
        resources = container.resources
        requests = (resources.requests if resources else None) or {}
        if "cpu" in requests:
            cpu += to_quantity(requests["cpu"])
        if "memory" in requests:
            memory += to_quantity(requests["memory"])

    return cpu, memory


def creation_time(pod) -> Optional[Any]:
    """Get a pod's creation timestamp (None if not set)."""
    metadata = pod.metadata
    return metadata.creation_timestamp if metadata else None
