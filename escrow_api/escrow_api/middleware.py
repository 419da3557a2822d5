import logging
import time

logger = logging.getLogger('audit')


class RequestAuditLoggingMiddleware:
    """Writes one audit line per request: caller, method, path, status and timing."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        started = time.monotonic()
        response = self.get_response(request)
        elapsed_ms = (time.monotonic() - started) * 1000

        user = getattr(request, 'user', None)
        caller = user if user is not None and user.is_authenticated else "Anonymous"

        logger.info(
            f"{caller} - {request.method} {request.get_full_path()} "
            f"-> {response.status_code} ({elapsed_ms:.1f}ms) - IP: {self.get_client_ip(request)}"
        )

        return response

    def get_client_ip(self, request):
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            return x_forwarded_for.split(',')[0].strip()
        return request.META.get('REMOTE_ADDR')
