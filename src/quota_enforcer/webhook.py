"""Validating admission webhook for pod creation."""

import logging
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from kubernetes import client
from prometheus_client import CollectorRegistry
from starlette.concurrency import run_in_threadpool

from .admission import AdmissionDecisionEngine
from .health import HealthState, create_router
from .utils import pod_requests

logger = logging.getLogger(__name__)


def _mapping(obj: Dict[str, Any], field: str) -> Dict[str, Any]:
    value = obj.get(field) or {}
    if not isinstance(value, dict):
        raise ValueError(f"{field} must be a mapping")
    return value


def decode_pod(raw: Dict[str, Any]) -> client.V1Pod:
    """
    Build a V1Pod from the object embedded in an AdmissionReview.

    Only the fields admission reads are kept: name, namespace, phase and
    the container resource requests.

    Raises:
        ValueError: If the object is not a pod or a request is not a quantity
    """
    if not isinstance(raw, dict):
        raise ValueError(f"pod object must be a mapping, got {type(raw).__name__}")

    metadata = _mapping(raw, "metadata")
    spec = _mapping(raw, "spec")
    status = _mapping(raw, "status")

    containers = []
    for container in spec.get("containers") or []:
        if not isinstance(container, dict):
            raise ValueError("container must be a mapping")
        requests = _mapping(container, "resources").get("requests") or None
        if requests is not None and not isinstance(requests, dict):
            raise ValueError("container requests must be a mapping")
        containers.append(
            client.V1Container(
                name=container.get("name") or "",
                resources=client.V1ResourceRequirements(requests=requests),
            )
        )

    pod = client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=metadata.get("name") or metadata.get("generateName"),
            namespace=metadata.get("namespace"),
        ),
        spec=client.V1PodSpec(containers=containers),
        status=client.V1PodStatus(phase=status.get("phase")),
    )
    # Raises ValueError on an unparseable quantity
    pod_requests(pod)
    return pod


def review_response(review: Dict[str, Any], uid: str, allowed: bool, message: str = "") -> Dict[str, Any]:
    response: Dict[str, Any] = {"uid": uid, "allowed": allowed}
    if not allowed:
        response["status"] = {"code": 403, "message": message}
    return {
        "apiVersion": review.get("apiVersion") or "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "response": response,
    }


def create_app(engine: AdmissionDecisionEngine, health: HealthState, registry: CollectorRegistry) -> FastAPI:
    """
    Create the webhook app.

    Routes:
        POST /validate    AdmissionReview v1 for pod CREATE
        POST /invalidate  {"namespace": "..."} cache bypass hook
        GET  /healthz, /readyz, /metrics
    """
    app = FastAPI(title="resource-quota-enforcer-webhook")

    @app.post("/validate")
    async def validate(request: Request):
        try:
            review = await request.json()
        except ValueError:
            return PlainTextResponse("could not decode admission review", status_code=400)

        req = review.get("request") if isinstance(review, dict) else None
        if not req:
            return PlainTextResponse("no admission request", status_code=400)

        uid = req.get("uid", "")
        namespace = req.get("namespace", "")
        kind = (req.get("kind") or {}).get("kind")

        if kind != "Pod" or req.get("operation") != "CREATE":
            return JSONResponse(review_response(review, uid, True))

        try:
            pod = decode_pod(req.get("object") or {})
        except (TypeError, ValueError) as e:
            logger.warning(f"Allowing undecodable pod in {namespace}: {e}")
            return JSONResponse(review_response(review, uid, True))

        decision = await run_in_threadpool(engine.decide, namespace, pod)
        if decision.allowed:
            return JSONResponse(review_response(review, uid, True))
        return JSONResponse(
            review_response(review, uid, False, f"Pod denied by QuotaPolicy: {decision.reason}")
        )

    @app.post("/invalidate")
    async def invalidate(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            return PlainTextResponse("bad request", status_code=400)

        namespace = payload.get("namespace") if isinstance(payload, dict) else None
        if not namespace:
            return PlainTextResponse("namespace required", status_code=400)

        engine.invalidate(namespace)
        return {"status": "invalidated"}

    app.include_router(create_router(health, registry))
    return app
