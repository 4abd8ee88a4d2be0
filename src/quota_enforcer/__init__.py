"""Resource Quota Enforcer - per-namespace pod, CPU and memory limits for Kubernetes."""

__version__ = "0.1.0"
