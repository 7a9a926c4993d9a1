"""
SiteTrack
Blueprint package. Each module defines one Flask blueprint; the app factory
registers them.
"""
