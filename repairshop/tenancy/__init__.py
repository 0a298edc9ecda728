"""Tenant isolation enforcement: installer, verifier and protocol harness."""
from repairshop.tenancy.installer import InstallationError, InvariantInstaller
from repairshop.tenancy.outcomes import InstallReport, Outcome
from repairshop.tenancy.protocol import ProtocolHarness, ProtocolSummary, ScenarioResult
from repairshop.tenancy.verifier import InvariantVerifier, VerificationReport

__all__ = [
    "InstallationError",
    "InvariantInstaller",
    "InstallReport",
    "Outcome",
    "ProtocolHarness",
    "ProtocolSummary",
    "ScenarioResult",
    "InvariantVerifier",
    "VerificationReport",
]
