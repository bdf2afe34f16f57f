"""
Load-testing harness for a ledger-backed provenance service.

This package fingerprints a corpus of XML documents with canonical XML and
SHA-256, submits the fingerprints to the ledger as concurrent writes, replays
them as sequential reads, and records canonicalization, write-dispatch and
read latencies as plain timing files.
"""

from .main import main

__all__ = ["main"]
