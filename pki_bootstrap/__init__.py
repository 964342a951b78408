"""
PKI bootstrap: a small CA plus server and client certificates for named identities.
"""

__version__ = "0.1.0"
