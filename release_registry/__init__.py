"""
Release Registry.

Publishes package releases whose content hashes are anchored on an
append-only ledger, and serves them only while the ledger says they are
active.
"""

__version__ = "0.1.0"
