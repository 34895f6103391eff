"""
Books Kernel

Foundations shared by the bookkeeping engines:
- Fixed-precision Money with a single pinned rounding policy
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging
"""

__version__ = "0.1.0"
