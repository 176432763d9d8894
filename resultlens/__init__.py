"""resultlens: GTU gradesheet progression and detention analysis."""

__version__ = "1.0.0"
