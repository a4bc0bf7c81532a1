"""
fabric_resolver — endpoint and signing-identity resolution for a declared network topology.

Maps runtime names (container hostnames, service URLs) onto the peers,
orderers and channels of a YAML network configuration through ordered
entity-matcher rules, and assembles a user's certificate and private key
from whichever credential source holds them.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
