"""fleet-deployer: promote container images onto fleet targets."""

__version__ = "0.1.0"
