from datetime import datetime, timezone

from django.db import connection
from django.http import JsonResponse

from fiscal.models import FiscalJobTrigger


def liveness(request):
    return JsonResponse({"ok": True})


def readiness(request):
    """
    Banco acessível + atraso do agendador fiscal (triggers vencidos há mais
    de um intervalo indicam que run_fiscal_scheduler não está rodando).
    """
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
    except Exception as e:
        return JsonResponse({"ok": False, "error": str(e)}, status=503)

    now = datetime.now(timezone.utc)
    overdue = sum(
        1
        for trigger in FiscalJobTrigger.objects.only("next_due_at", "interval_minutes")
        if (now - trigger.next_due_at).total_seconds() > trigger.interval_minutes * 60
    )
    return JsonResponse({"ok": True, "scheduler_overdue_triggers": overdue})


def time_now(request):
    now = datetime.now(timezone.utc).astimezone()
    return JsonResponse({"now": now.isoformat()})
