"""swproxy: rewrite-and-forward proxy for chat-completion APIs."""

__version__ = "0.1.0"
