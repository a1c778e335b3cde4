# storefront/middleware.py
from django.http import HttpRequest

# Responses on these paths carry payment or order state and must never be cached
NO_STORE_PREFIXES = (
    '/api/orders/',
    '/api/refunds/',
    '/api/admin/',
    '/api/webhooks/',
)


class NoStoreApiMiddleware:
    """Mark order, refund and webhook API responses as uncacheable"""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request: HttpRequest):
        response = self.get_response(request)
        if request.path.startswith(NO_STORE_PREFIXES):
            response['Cache-Control'] = 'no-store, max-age=0'
            response['Pragma'] = 'no-cache'
        return response
