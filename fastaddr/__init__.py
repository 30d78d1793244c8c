"""Choose the fastest IP address among DNS answers by pinging the candidates."""

__version__ = "0.1.0"

__all__ = ["cache", "fastest", "ping"]