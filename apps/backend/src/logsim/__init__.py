"""logsim: scenario and chain scheduling engine for synthetic log traffic."""

__version__ = "0.1.0"
