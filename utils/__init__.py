"""
Utilities package for the portfolio analysis engine.
"""

# NOTE: Submodules are imported explicitly where needed (for example
# `from utils.database import get_db_connection`).
