"""Attestation engine — signing state machine and the attestation manager."""

from covenant.engine.state_machine import SigningStateMachine
from covenant.engine.manager import AttestationManager

__all__ = ["SigningStateMachine", "AttestationManager"]
