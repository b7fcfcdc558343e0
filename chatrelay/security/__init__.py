"""Request gating applied before any provider call."""

from chatrelay.security.anti_abuse import AntiAbuseVerifier

__all__ = ["AntiAbuseVerifier"]
