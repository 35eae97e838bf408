"""
Escrow Ledger

Identity-gated crowdfunding escrow: a KYC registry reviewed by a single
administrator, and a campaign ledger that holds contributions until the goal
is met and releases them to the creator exactly once.
"""

__version__ = "1.0.0"
