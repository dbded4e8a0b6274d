"""
Service layer for the passgate backend.

This package contains passcode issuance, credential validation at access
points, the append-only access audit trail and device liveness. The API
package only adapts these services to HTTP.
"""

from .access_control import AccessControl, build_access_control, get_access_control

__all__ = ["AccessControl", "build_access_control", "get_access_control"]
