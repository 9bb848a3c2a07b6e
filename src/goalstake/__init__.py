"""goalstake - staking goal challenges with tiered reward distribution."""

__version__ = "0.1.0"
