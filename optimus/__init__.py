"""
Optimus submission system.

Packages a local directory into a zip archive under a server-dictated
packaging policy and submits it against a per-identity, per-competition
attempt quota.
"""

__version__ = "0.3.0"
