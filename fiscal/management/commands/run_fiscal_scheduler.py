import time

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from fiscal.services.trigger_service import recover_missed_triggers, run_due_triggers


class Command(BaseCommand):
    help = (
        "Executa o agendador de jobs fiscais: dispara os triggers duráveis "
        "(fechamento diário, arquivo de auditoria, certificados) vencidos."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--once",
            action="store_true",
            help="Recupera os triggers perdidos, dispara os vencidos e encerra.",
        )
        parser.add_argument(
            "--poll-seconds",
            type=int,
            default=None,
            help="Intervalo entre varreduras (default = FISCAL_SCHEDULER_POLL_SECONDS).",
        )

    def handle(self, *args, **options):
        poll_seconds = options["poll_seconds"] or settings.FISCAL_SCHEDULER_POLL_SECONDS
        if poll_seconds <= 0:
            raise CommandError("--poll-seconds deve ser maior que zero.")

        fired = recover_missed_triggers()
        self.stdout.write(
            self.style.NOTICE(f"[run_fiscal_scheduler] Recuperação concluída: {fired} trigger(s) disparado(s).")
        )

        if options["once"]:
            return

        self.stdout.write(self.style.NOTICE(f"[run_fiscal_scheduler] Varrendo a cada {poll_seconds}s."))
        try:
            while True:
                time.sleep(poll_seconds)
                fired = run_due_triggers()
                if fired:
                    self.stdout.write(f"[run_fiscal_scheduler] {fired} trigger(s) disparado(s).")
        except KeyboardInterrupt:
            self.stdout.write(self.style.SUCCESS("[run_fiscal_scheduler] Encerrado."))
