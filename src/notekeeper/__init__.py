"""
notekeeper - a personal notes application.

Notes carry a title, optional content and category, ordered tags, and
attached photos and voice memos. Attachment binaries live on the
filesystem; everything else is persisted in SQLite through SQLAlchemy.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notekeeper")
except PackageNotFoundError:
    __version__ = "0.3.0"
