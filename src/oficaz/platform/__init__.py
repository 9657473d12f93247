"""
Oficaz platform services.

This package provides the subscription and entitlement engine behind the
Oficaz business-management SaaS:
- Trial lifecycle and account blocking
- Feature entitlements from plan, overrides and add-ons
- Add-on purchases, deferred cancellation and cooldown
- Seat and plan changes billed with proration
- Periodic sweep of time-based transitions
"""

__version__ = "1.0.0"
__author__ = "Oficaz Team"


def get_version() -> str:
    """Get platform services version."""
    return __version__


__all__ = ["__version__", "get_version"]
