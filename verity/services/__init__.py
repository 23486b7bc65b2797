"""
Evidence services: fingerprinting and ledger orchestration.
"""

from .fingerprint import *
from .evidence import *
