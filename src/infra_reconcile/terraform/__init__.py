"""Terraform command line integration."""

from .backend import BackendInitializer
from .runner import CommandResult, CommandRunner, TerraformRunner

__all__ = [
    "BackendInitializer",
    "CommandResult",
    "CommandRunner",
    "TerraformRunner",
]
