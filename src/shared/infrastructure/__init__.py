"""
Infrastructure Layer
=====================

Low-level technical concerns shared by every module:
- Structured JSON logging
- Correlation-aware logger adapters
- Latency logging
"""
