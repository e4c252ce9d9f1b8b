"""bch-stealth: RPA stealth payments and sharded covenant pools for Bitcoin Cash."""

__version__ = "0.1.0"
