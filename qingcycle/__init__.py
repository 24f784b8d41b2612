"""
QingCloud resource lifecycle orchestration.

Drives compute instances and caches through create, read, update and delete
against the QingCloud control-plane API, waiting out transitional states and
retrying transient rejections so that a declarative tool can apply desired
state safely.
"""

__version__ = "0.1.0"
