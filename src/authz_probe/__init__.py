"""
Authz Probe - Authorization Bypass Scanner for HTTP APIs

Replays the same request under several identities (victim, attacker,
unauthenticated) and scores how alike the responses are to detect
Broken Object Level Authorization (IDOR/BOLA).
"""

__version__ = "1.0.0"
__author__ = "Security Researcher"
