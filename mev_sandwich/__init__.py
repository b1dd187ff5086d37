"""Multi-chain sandwich bundle execution pipeline"""

__version__ = "0.1.0"
