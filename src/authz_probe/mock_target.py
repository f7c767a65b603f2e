"""
In-process vulnerable target for demonstrations and tests.

Serves `GET /api/mock/users/{id}` through an `httpx.MockTransport`. Any
requester gets any user's record (the IDOR), except identities listed in
`denied_identities`, which receive 403.
"""

import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

import httpx

logger = logging.getLogger(__name__)

MOCK_BASE_URL = "http://mock.target.local"
USER_PATH = re.compile(r"^/api/mock/users/([^/]+)/?$")
IDENTITY_HEADER = "x-user-id"


def make_user(user_id: str) -> Dict[str, Any]:
    """Build the record returned for `user_id`."""
    return {
        "id": user_id,
        "email": f"user{user_id}@example.com",
        "name": f"User {user_id}",
        "role": "customer",
        "created": datetime.now().isoformat(),
        "profile": {
            "address": f"{user_id} Main St",
            "phone": f"+1-555-{user_id}",
        },
    }


class MockUserTarget:
    """Request handler for an `httpx.MockTransport`."""

    def __init__(self, denied_identities: Optional[Iterable[str]] = None):
        self.denied_identities = set(denied_identities or ())
        self.requests: list = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        requested_by = request.headers.get(IDENTITY_HEADER, "anonymous")
        self.requests.append((request.method, request.url.path, requested_by))
        logger.debug(f"Mock target: {request.method} {request.url.path} as {requested_by}")

        match = USER_PATH.match(request.url.path)
        if request.method != "GET" or not match:
            return httpx.Response(404, json={"ok": False, "error": "not found"})

        if requested_by in self.denied_identities:
            return httpx.Response(403, json={"ok": False, "error": "forbidden"})

        body = {"ok": True, "requestedBy": requested_by, "user": make_user(match.group(1))}
        return httpx.Response(
            200,
            content=json.dumps(body),
            headers={"content-type": "application/json"},
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def demo_request(attacker_id: str = "1002", unauthenticated: bool = True) -> Dict[str, Any]:
    """A scan request aimed at the mock target, in wire format."""
    return {
        "baseUrl": MOCK_BASE_URL,
        "endpoints": [
            {
                "method": "GET",
                "pathTemplate": "/api/mock/users/{id}",
                "pathParams": [{"name": "id", "samples": ["1001", attacker_id]}],
            }
        ],
        "authContexts": {
            "victim": {"headers": {IDENTITY_HEADER: "1001"}},
            "attacker": {"headers": {IDENTITY_HEADER: attacker_id}},
            "unauthenticated": unauthenticated,
        },
    }
