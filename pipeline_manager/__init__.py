"""CI/CD pipeline orchestration for container builds and Kubernetes deployments."""

__version__ = "0.1.0"
