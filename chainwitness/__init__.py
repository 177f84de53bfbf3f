"""Chain Witness: verified revision history with Merkle witness anchoring."""

__version__ = "0.1.0"
