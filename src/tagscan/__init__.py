"""
TagScan - Multi-modal capture and submission pipeline

Captures photos, videos and documents of physical merchandise, keeps them
under a strict payload budget, and submits them to a multi-model valuation
service, optionally with a Ghost Mode arbitrage overlay.
"""

__version__ = "1.0.0"
__author__ = "TagScan Team"
