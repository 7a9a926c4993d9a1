"""
Security headers middleware.

The service only answers JSON and file downloads, so the policy denies
framing and every content source.

Usage:
    from app.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""

from flask import request

SHARE_PREFIXES = ("/api/v1/shared-assignments/", "/api/v1/shared-documents/")


def init_security_headers(app):
    """Register after_request handler that injects security headers."""

    @app.after_request
    def _add_security_headers(response):
        response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")

        # Prevent MIME-type sniffing on uploaded files
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")

        # Ignored over HTTP
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
        )
        response.headers.setdefault("Referrer-Policy", "no-referrer")

        # Share links carry the token in the path
        if request.path.startswith(SHARE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"

        response.headers.pop("Server", None)
        return response
