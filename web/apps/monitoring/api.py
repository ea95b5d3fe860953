from django.conf import settings
from django.db import connection
from django.http import JsonResponse


def health_view(_request):
    """Report database reachability and which order adapters are wired."""
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except Exception:
        db_ok = False

    use_http = getattr(settings, "USE_HTTP_ADAPTERS", True)
    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {
                "db": {"ok": db_ok},
                "order_store": {"backend": getattr(settings, "ORDER_STORE_BACKEND", "django")},
                "payment_gateway": {
                    "mode": "http" if use_http else "stub",
                    "base_url": settings.PAYMENT_GATEWAY_BASE_URL if use_http else None,
                },
            },
        },
        status=code,
    )
