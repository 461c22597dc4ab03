"""RTMP protocol stack: handshake, chunk streams, messages, AMF0 and connections."""

__version__ = "0.1.0"