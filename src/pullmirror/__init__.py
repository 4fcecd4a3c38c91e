"""pullmirror: local-first mirror of GitHub pull requests.

The sync engine keeps a SQLite copy of pull requests and their checks,
commits, files, reviews and comments fresh while staying inside the
GitHub API quota.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
