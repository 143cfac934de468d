"""Kubernetes mutating admission webhook that injects sidecars from named templates."""

__version__ = "0.1.0"
