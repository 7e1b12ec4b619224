"""
Rural Audit — due-diligence checklist tracker for rural real-estate deals.

Architecture: Audit State Store → Persistence Gateway (remote) / Local Fallback
Philosophy:  The in-memory tree is the truth for the session. The remote store
             is the truth across reloads.
"""

__version__ = "1.0.0"
