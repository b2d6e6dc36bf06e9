"""Backup domain exports."""

from .value_objects import BackupSnapshot, BackupSummary

__all__ = ["BackupSnapshot", "BackupSummary"]
