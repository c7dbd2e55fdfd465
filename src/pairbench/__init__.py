"""
pairbench - cross-product validation of client container images.

Every client image is paired with every validator image; each pair yields
a pass/fail verdict with timing, collected into a client × validator
matrix.

Packages:
- pairbench.core: Logging, errors, deadlines
- pairbench.matrix: Runtime adapter, readiness, pair controller, orchestrator
- pairbench.cli: ``pairbench`` command line
"""

__version__ = "0.1.0"
