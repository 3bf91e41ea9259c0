"""
Session token persistence.
"""

from arraypoll.session.store import SessionStore

__all__ = ['SessionStore']
