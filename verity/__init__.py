"""
Verity - Hash-Chain Evidence Ledger

Records content fingerprints of captured photos and video frames, bound to
their claimed GPS position and capture time, in an append-only proof-of-work
block chain that can be queried for verification.
"""

__version__ = "1.0.0"
__author__ = "Verity Team"
__description__ = "Hash-Chain Evidence Ledger"
