from flask_talisman import Talisman


def init_security(app):
    """
    Production/staging security headers. The service only speaks JSON, so the
    CSP denies everything except same-origin fetches and Stripe redirects.
    """
    csp = {
        "default-src": ["'none'"],
        "connect-src": ["'self'", "https://api.stripe.com"],
        "frame-ancestors": ["'none'"],
        "base-uri":    ["'none'"],
        "form-action": ["'self'", "https://checkout.stripe.com"],
    }

    Talisman(
        app,
        content_security_policy=csp,
        force_https=True,
        strict_transport_security=True,
        session_cookie_secure=True,
        frame_options="DENY",
        referrer_policy="strict-origin-when-cross-origin",
    )
