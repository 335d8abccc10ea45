"""HTTP/1 payload helpers, TCP packet parsing and reassembly, and a TCP client."""

__version__ = "1.3.0"