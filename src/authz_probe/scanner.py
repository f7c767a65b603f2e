"""
Scan Orchestrator for Authz Probe.

Validates a scan request, resolves each endpoint into a probe target,
runs the probes on a bounded worker pool and assembles the findings.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from functools import partial
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import httpx
from pydantic import ValidationError

from .detector import ProbeRunner
from .http_client import HTTPClient
from .models import EndpointSpec, HttpMethod, ProbeTarget, ScanRequest, ScanResult
from .scheduler import run_bounded
from .templating import MalformedTarget, build_url, resolve, resolve_body

logger = logging.getLogger(__name__)

BODY_METHODS = {HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH}


class ScanValidationError(ValueError):
    """Raised when a scan request is rejected; lists every violated field."""

    def __init__(self, errors: List[Dict[str, str]]):
        self.errors = errors
        fields = ", ".join(e["field"] for e in errors)
        super().__init__(f"Invalid scan request ({len(errors)} violations): {fields}")

    def to_dict(self) -> Dict[str, Any]:
        return {"error": "validation_error", "violations": self.errors}


def validate_request(payload: Union[ScanRequest, Mapping[str, Any]]) -> ScanRequest:
    """
    Validate a raw scan request.

    Raises:
        ScanValidationError: With one entry per violation
    """
    if isinstance(payload, ScanRequest):
        return payload

    try:
        return ScanRequest.model_validate(payload)
    except ValidationError as e:
        violations = [
            {
                "field": ".".join(str(part) for part in err["loc"]) or "(root)",
                "message": err["msg"],
                "type": err["type"],
            }
            for err in e.errors()
        ]
        raise ScanValidationError(violations) from e


class Scanner:
    """
    Runs one scan.

    Nothing outlives a call to `run`: the HTTP client, the probe runner and
    the finding list are all created per scan.
    """

    def __init__(
        self,
        request: ScanRequest,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.request = request
        self.transport = transport

    def build_target(self, endpoint: EndpointSpec) -> Optional[ProbeTarget]:
        """Resolve an endpoint for the victim; None if it cannot be probed."""
        victim_sample = endpoint.victim_sample()
        if victim_sample is None:
            logger.info(f"No path parameter on {endpoint.path_template}, skipping")
            return None

        variables = endpoint.path_vars(victim_sample)
        path = resolve(endpoint.path_template, variables)

        try:
            url = build_url(self.request.base_url, path, endpoint.query_values())
        except MalformedTarget as e:
            logger.warning(f"Skipping {endpoint.path_template}: {e}")
            return None

        json_body = None
        content = None
        if endpoint.body_template is not None and endpoint.method in BODY_METHODS:
            if isinstance(endpoint.body_template, str):
                content = resolve(endpoint.body_template, variables)
            else:
                json_body = resolve_body(endpoint.body_template, variables)

        return ProbeTarget(
            method=endpoint.method,
            path=path,
            url=url,
            victim_sample=victim_sample,
            attacker_sample=endpoint.attacker_sample(),
            json_body=json_body,
            content=content,
        )

    def build_targets(self) -> Tuple[List[ProbeTarget], int]:
        """Resolve every endpoint; returns (targets, skipped count)."""
        targets = []
        for endpoint in self.request.endpoints:
            target = self.build_target(endpoint)
            if target is not None:
                targets.append(target)
        return targets, len(self.request.endpoints) - len(targets)

    async def run(self) -> ScanResult:
        """Run the scan and collect findings in completion order."""
        scan_id = str(uuid.uuid4())[:8]
        start_time = datetime.now()

        logger.info(f"Starting scan {scan_id} against {self.request.base_url}")

        targets, skipped = self.build_targets()
        logger.info(f"{len(targets)} endpoints to probe, {skipped} skipped")

        async with HTTPClient(
            timeout_ms=self.request.timeout_ms,
            transport=self.transport,
        ) as http_client:
            runner = ProbeRunner(http_client, self.request)
            jobs = [partial(runner.probe_endpoint, target) for target in targets]
            batches = await run_bounded(jobs, self.request.max_concurrency)
            requests_completed = len(http_client.history)

        findings = [finding for batch in batches for finding in batch]

        result = ScanResult(
            scan_id=scan_id,
            target=self.request.base_url,
            start_time=start_time,
            end_time=datetime.now(),
            endpoints_total=len(self.request.endpoints),
            endpoints_probed=len(targets),
            endpoints_skipped=skipped,
            requests_completed=requests_completed,
            findings=findings,
        )

        logger.info(
            f"Scan complete: {len(findings)} findings "
            f"in {result.duration:.1f}s"
        )
        return result


async def run_scan(
    payload: Union[ScanRequest, Mapping[str, Any]],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ScanResult:
    """Validate `payload` and run the scan."""
    request = validate_request(payload)
    return await Scanner(request, transport=transport).run()


def scan(
    payload: Union[ScanRequest, Mapping[str, Any]],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ScanResult:
    """Synchronous entry point around `run_scan`."""
    return asyncio.run(run_scan(payload, transport=transport))
