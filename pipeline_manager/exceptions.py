"""Custom exceptions for pipeline manager."""


class PipelineManagerError(Exception):
    """Base exception for all pipeline manager errors."""

    def __init__(self, message: str, details: str = None):
        """Initialize the exception.

        Args:
            message: Main error message
            details: Additional details or suggestions
        """
        self.message = message
        self.details = details
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message.

        Returns:
            Formatted error message with details
        """
        if self.details:
            return f"{self.message}\n\nDetails: {self.details}"
        return self.message


class ConfigurationError(PipelineManagerError):
    """Exception raised for configuration errors."""

    pass


class ValidationError(PipelineManagerError):
    """Exception raised for validation errors."""

    pass


class CredentialError(PipelineManagerError):
    """Exception raised when required credentials are missing."""

    pass


class StageError(PipelineManagerError):
    """Exception raised when a pipeline stage cannot run a command."""

    pass


class ManifestError(PipelineManagerError):
    """Exception raised for Kubernetes manifest errors."""

    pass


class TerraformError(PipelineManagerError):
    """Exception raised for Terraform execution errors."""

    pass


class AnsibleError(PipelineManagerError):
    """Exception raised for Ansible execution errors."""

    pass


class KubernetesError(PipelineManagerError):
    """Exception raised for Kubernetes API errors."""

    pass
