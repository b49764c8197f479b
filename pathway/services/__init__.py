from .checkout import create_checkout_session, create_portal_session

__all__ = ["create_checkout_session", "create_portal_session"]
