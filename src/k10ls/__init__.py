"""k10ls - keep Kubernetes port-forwards alive without kubectl."""

__version__ = "0.3.0"
