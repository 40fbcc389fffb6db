"""Reactor-style building blocks: timestamps, timers, a timing wheel and TCP connections."""

__version__ = "0.1.0"
__all__ = ["timestamp", "timer", "timing_wheel", "tcp_connection"]