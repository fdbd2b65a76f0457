"""HTTP surface for the orchestrator."""

from .app import build_auth_gate, build_service, create_app

__all__ = ["build_auth_gate", "build_service", "create_app"]
