"""CLI command modules for build-bouncer."""

from buildbouncer.command.check import CheckCommand
from buildbouncer.command.doctor import DoctorCommand
from buildbouncer.command.validate import ValidateCommand
from buildbouncer.command.why import WhyCommand

__all__ = ["CheckCommand", "DoctorCommand", "ValidateCommand", "WhyCommand"]
