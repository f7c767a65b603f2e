"""
Data models for Authz Probe.

Pydantic models for the scan request (endpoints, identities, limits),
findings, and scan results. Every model accepts snake_case field names as
well as the camelCase names used on the wire.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class HttpMethod(str, Enum):
    """HTTP methods an endpoint can be probed with."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class AttackVector(str, Enum):
    """Identity axis a finding was produced on."""
    ATTACKER_URL_ID = "Attacker requests victim's resource via URL id"
    UNAUTHENTICATED = "Unauthenticated requests victim's resource"


class WireModel(BaseModel):
    """Base model accepting both python and camelCase field names."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# --- Endpoint Models ---

class ParamSpec(WireModel):
    """A named parameter and the sample values it can take."""
    name: str = Field(min_length=1)
    samples: List[str] = Field(min_length=1)


class EndpointSpec(WireModel):
    """An endpoint supplied by the caller for probing."""
    method: HttpMethod = HttpMethod.GET
    path_template: str
    path_params: List[ParamSpec] = Field(default_factory=list)
    query_params: Optional[List[ParamSpec]] = None
    body_template: Optional[Union[str, Dict[str, Any]]] = None

    @property
    def primary_param(self) -> Optional[ParamSpec]:
        """The parameter that carries the resource reference, if any."""
        return self.path_params[0] if self.path_params else None

    def victim_sample(self) -> Optional[str]:
        primary = self.primary_param
        return primary.samples[0] if primary else None

    def attacker_sample(self) -> Optional[str]:
        # A single sample means the attacker references the same resource.
        primary = self.primary_param
        if not primary:
            return None
        return primary.samples[1] if len(primary.samples) > 1 else primary.samples[0]

    def path_vars(self, primary_value: str) -> Dict[str, str]:
        """Template variables with the primary parameter set to `primary_value`."""
        variables = {p.name: p.samples[0] for p in self.path_params[1:]}
        if self.primary_param:
            variables[self.primary_param.name] = primary_value
        return variables

    def query_values(self) -> Dict[str, Optional[str]]:
        """First sample of every query parameter."""
        if not self.query_params:
            return {}
        return {p.name: p.samples[0] for p in self.query_params}


@dataclass(frozen=True)
class ProbeTarget:
    """An endpoint resolved into the concrete request every identity sends."""
    method: HttpMethod
    path: str  # As resolved for the victim
    url: str
    victim_sample: str
    attacker_sample: str
    json_body: Optional[Any] = None
    content: Optional[str] = None


# --- Identity Models ---

class AuthContext(WireModel):
    """Identity material sent with a request."""
    headers: Optional[Dict[str, str]] = None
    cookies: Optional[Dict[str, str]] = None

    def identity_headers(self) -> Dict[str, str]:
        """Headers to send, with cookies folded into a single cookie header."""
        headers = dict(self.headers or {})
        if self.cookies:
            headers["cookie"] = "; ".join(f"{k}={v}" for k, v in self.cookies.items())
        return headers


class AuthContexts(WireModel):
    """The identities a scan compares."""
    victim: AuthContext
    attacker: Optional[AuthContext] = None
    unauthenticated: bool = False


# --- Configuration Models ---

class ScanRequest(WireModel):
    """Configuration for a scan."""
    base_url: str
    endpoints: List[EndpointSpec] = Field(min_length=1)
    auth_contexts: AuthContexts
    speed_gate_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    max_concurrency: int = Field(default=5, ge=1, le=12)
    timeout_ms: int = Field(default=8000, ge=1000, le=60000)

    @field_validator("base_url")
    @classmethod
    def _require_absolute_url(cls, value: str) -> str:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as e:
            raise ValueError(f"invalid URL: {e}")
        if url.scheme not in ("http", "https") or not url.host:
            raise ValueError("must be an absolute http(s) URL")
        return value


# --- Result Models ---

class Finding(WireModel):
    """A probe result that passed the speed gate."""
    model_config = ConfigDict(frozen=True)

    id: str
    endpoint: str
    method: HttpMethod
    attack_vector: AttackVector
    status_victim: int
    status_attacker: int
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: List[str] = Field(default_factory=list)


class ScanResult(WireModel):
    """Complete scan result."""
    scan_id: str
    target: str
    start_time: datetime
    end_time: Optional[datetime] = None

    endpoints_total: int = 0
    endpoints_probed: int = 0
    endpoints_skipped: int = 0
    requests_completed: int = 0

    # Completion order, not declaration order
    findings: List[Finding] = Field(default_factory=list)

    @property
    def duration(self) -> Optional[float]:
        """Get scan duration in seconds."""
        if self.end_time and self.start_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    def count_by_vector(self, vector: AttackVector) -> int:
        """Count findings for one attack vector."""
        return sum(1 for f in self.findings if f.attack_vector == vector)
