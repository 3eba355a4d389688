"""Turn raw AI output into validated, consistent task graph changes."""
