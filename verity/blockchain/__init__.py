"""
Hash-chain primitives: blocks and the append-only ledger.
"""

from .block import *
from .ledger import *
