"""ConvoIQ: an agent that refines conversation-analysis components."""

__version__ = "0.1.0"
