"""CLI commands package for abengine."""

from abengine.cli.commands.experiment import experiment_command

__all__ = [
    "experiment_command",
]
