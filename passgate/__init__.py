"""
Passgate backend: passcode issuance and access validation for gated sites.
"""

__version__ = "0.1.0"
