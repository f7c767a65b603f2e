"""
Identity Probe Runner for Authz Probe.

Core testing logic: for one endpoint, fetch the victim's resource as the
victim (baseline), then as the attacker, then optionally with no identity
at all, and turn the differences into a confidence score.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from .comparator import similarity
from .http_client import HTTPClient, ProbeTransportFailure
from .models import AttackVector, Finding, ProbeTarget, ScanRequest

logger = logging.getLogger(__name__)

UNAUTHORIZED_SUCCESS_SCORE = 0.6
SIMILARITY_BONUS = 0.4
PROTECTED_SCORE = 0.05
OWN_RESOURCE_PENALTY = 0.1
LEAKED_ID_BONUS = 0.15

UNAUTHENTICATED_BASE_SCORE = 0.65
UNAUTHENTICATED_SIMILARITY_BONUS = 0.35


class ProbeParseFailure(ValueError):
    """Raised when a response body is not structured data."""
    pass


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def parse_body(text: str) -> Any:
    """Parse a JSON response body."""
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        raise ProbeParseFailure(f"Body is not JSON: {e}") from e


def _id_string(value: Any) -> Optional[str]:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    return str(value) or None


def extract_id(data: Any) -> Optional[str]:
    """
    Find an `id` field at the top level or one level down.

    Returns None when nothing usable is found.
    """
    if isinstance(data, dict):
        if "id" in data:
            return _id_string(data["id"])
        children = data.values()
    elif isinstance(data, list):
        children = data
    else:
        return None

    for child in children:
        if isinstance(child, dict) and "id" in child:
            found = _id_string(child["id"])
            if found:
                return found
    return None


def score_attacker_probe(
    baseline_status: int,
    baseline_text: str,
    attacker_status: int,
    attacker_text: str,
    attacker_sample: str,
) -> Tuple[float, List[str]]:
    """
    Score the attacker's attempt on the victim's resource.

    Returns:
        (score clamped to [0, 1], evidence strings)
    """
    evidence: List[str] = []
    score = 0.0

    if not is_success(baseline_status):
        return score, evidence

    if is_success(attacker_status):
        sim = similarity(baseline_text, attacker_text)
        score += UNAUTHORIZED_SUCCESS_SCORE
        score += min(SIMILARITY_BONUS, sim * SIMILARITY_BONUS)
        evidence.append(f"Similarity victim vs attacker: {sim * 100:.1f}%")
    elif attacker_status in (401, 403):
        return PROTECTED_SCORE, evidence

    score += _id_consistency(baseline_text, attacker_text, attacker_sample, evidence)

    return max(0.0, min(1.0, score)), evidence


def _id_consistency(
    baseline_text: str,
    attacker_text: str,
    attacker_sample: str,
    evidence: List[str],
) -> float:
    """Adjustment from the `id` fields of both bodies; 0.0 when they are not JSON."""
    try:
        victim_data = parse_body(baseline_text)
        attacker_data = parse_body(attacker_text)
    except ProbeParseFailure as e:
        logger.debug(f"Skipping id consistency check: {e}")
        return 0.0

    adjustment = 0.0
    victim_id = extract_id(victim_data)
    attacker_id = extract_id(attacker_data)

    if attacker_id is not None and attacker_id == attacker_sample:
        # Attacker got their own record back
        adjustment -= OWN_RESOURCE_PENALTY

    if victim_id and victim_id in attacker_text:
        adjustment += LEAKED_ID_BONUS
        evidence.append(f"Victim id '{victim_id}' present in attacker response")

    return adjustment


def score_unauthenticated_probe(
    baseline_text: str,
    unauthenticated_text: str,
) -> Tuple[float, List[str]]:
    """Score a successful request made without any identity material."""
    sim = similarity(baseline_text, unauthenticated_text)
    score = UNAUTHENTICATED_BASE_SCORE + min(
        UNAUTHENTICATED_SIMILARITY_BONUS, sim * UNAUTHENTICATED_SIMILARITY_BONUS
    )
    evidence = [f"Similarity victim vs unauthenticated: {sim * 100:.1f}%"]
    return max(0.0, min(1.0, score)), evidence


class ProbeRunner:
    """
    Runs the identity probe sequence for endpoints of one scan.

    Sequence per endpoint:
    - Baseline: victim identity (a failure abandons the endpoint)
    - Attacker: same URL with the attacker identity, or none
    - Unauthenticated (optional): same URL with no identity material
    """

    def __init__(self, http_client: HTTPClient, request: ScanRequest):
        self.http_client = http_client
        self.request = request
        self.threshold = request.speed_gate_threshold

        contexts = request.auth_contexts
        self.victim_headers = contexts.victim.identity_headers()
        self.attacker_headers = contexts.attacker.identity_headers() if contexts.attacker else {}

    async def probe_endpoint(self, target: ProbeTarget) -> List[Finding]:
        """
        Probe a single endpoint.

        Args:
            target: The resolved request for the endpoint

        Returns:
            Findings that passed the speed gate (zero, one or two)
        """
        findings: List[Finding] = []
        logger.debug(f"Probing {target.method.value} {target.path}")

        # Step 1: Baseline
        try:
            baseline = await self._send(target, self.victim_headers)
        except ProbeTransportFailure as e:
            logger.info(f"Baseline failed for {target.path}, skipping: {e}")
            return findings

        baseline_status = baseline.status_code
        baseline_text = baseline.text

        # Step 2: Attacker requests the victim's resource
        attacker_status = 0
        attacker_text = ""
        try:
            attacker = await self._send(target, self.attacker_headers)
            attacker_status = attacker.status_code
            attacker_text = attacker.text
        except ProbeTransportFailure as e:
            logger.debug(f"Attacker probe failed for {target.path}: {e}")

        # Step 3: Scoring
        score, evidence = await asyncio.to_thread(
            score_attacker_probe,
            baseline_status,
            baseline_text,
            attacker_status,
            attacker_text,
            target.attacker_sample,
        )
        if score >= self.threshold:
            findings.append(self._create_finding(
                target,
                AttackVector.ATTACKER_URL_ID,
                baseline_status,
                attacker_status,
                score,
                evidence,
            ))

        # Step 4: Unauthenticated
        if self.request.auth_contexts.unauthenticated:
            finding = await self._probe_unauthenticated(target, baseline_status, baseline_text)
            if finding:
                findings.append(finding)

        return findings

    async def _probe_unauthenticated(
        self,
        target: ProbeTarget,
        baseline_status: int,
        baseline_text: str,
    ) -> Optional[Finding]:
        try:
            response = await self._send(target, {})
        except ProbeTransportFailure as e:
            logger.debug(f"Unauthenticated probe failed for {target.path}: {e}")
            return None

        if not is_success(response.status_code):
            return None

        score, evidence = await asyncio.to_thread(
            score_unauthenticated_probe, baseline_text, response.text
        )
        if score < self.threshold:
            return None

        return self._create_finding(
            target,
            AttackVector.UNAUTHENTICATED,
            baseline_status,
            response.status_code,
            score,
            evidence,
        )

    async def _send(self, target: ProbeTarget, headers: Dict[str, str]):
        return await self.http_client.request(
            target.method.value,
            target.url,
            headers=headers or None,
            json=target.json_body,
            content=target.content,
        )

    def _create_finding(
        self,
        target: ProbeTarget,
        vector: AttackVector,
        status_victim: int,
        status_other: int,
        score: float,
        evidence: List[str],
    ) -> Finding:
        """Create a Finding and log it."""
        finding = Finding(
            id=str(uuid.uuid4()),
            endpoint=target.path,
            method=target.method,
            attack_vector=vector,
            status_victim=status_victim,
            status_attacker=status_other,
            confidence=round(score, 3),
            evidence=list(evidence),
        )
        logger.warning(
            f"[VULN] {vector.value}: {target.method.value} {target.path} "
            f"(confidence {finding.confidence:.3f})"
        )
        return finding
