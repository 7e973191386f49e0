"""Run report persistence."""

from .writer import RunReportWriter, current_image, deployment_stack, load_reports, previous_image

__all__ = ["RunReportWriter", "current_image", "deployment_stack", "load_reports", "previous_image"]
