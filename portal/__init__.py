"""Tenant portal: plugin lifecycle and tiered entitlement gating."""

__version__ = "1.0.0"
