"""Kumulus provider agent.

Runs on a provider host and:
- Provisions SSH-accessible tenant environments through the container engine
- Derives a signing identity from the provider's seed phrase
- Tracks registration/validation with the Kumulus control plane
- Sends signed health reports on a fixed cadence
"""

__version__ = "0.1.0"
