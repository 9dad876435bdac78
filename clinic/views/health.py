import logging

from django.core.cache import cache
from django.db import DatabaseError, connections
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def healthz(request):
    """Liveness check: database round trip plus a cache write."""
    checks = {}
    try:
        with connections['default'].cursor() as c:
            c.execute('SELECT 1')
            checks['db'] = c.fetchone()[0] == 1
    except DatabaseError as e:
        logger.error('health check database failure: %s', e)
        return JsonResponse({'ok': False, 'error': str(e)}, status=503)
    cache.set('healthz', 1, 5)
    checks['cache'] = cache.get('healthz') == 1
    return JsonResponse({'ok': all(checks.values()), **checks})
