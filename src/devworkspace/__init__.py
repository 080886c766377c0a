"""DevWorkspace controller - reconciliation core for per-user development workspaces."""

__version__ = "0.1.0"
