"""Scoped rate limits for function views."""


def throttle_scope(scope: str):
    """Set the ``ScopedRateThrottle`` scope of an ``@api_view`` function.

    ``api_view`` builds the view class when it decorates the function, so
    this decorator has to sit above it and tag the generated class.
    """
    def decorator(view):
        view.cls.throttle_scope = scope
        return view
    return decorator
