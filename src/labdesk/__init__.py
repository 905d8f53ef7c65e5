"""labdesk: lab order progress, result verification and turnaround tracking."""

__version__ = "0.1.0"
