import uuid

from django.db import models


class FiscalCountry(models.TextChoices):
    GERMANY = "DE", "Alemanha (KassenSichV)"
    AUSTRIA = "AT", "Áustria (RKSV)"
    ITALY = "IT", "Itália (RT)"
    FRANCE = "FR", "França (NF 525)"
    POLAND = "PL", "Polônia (JPK/KSeF)"


class SigningDeviceType(models.TextChoices):
    FISKALY_CLOUD = "fiskaly_cloud", "Fiskaly Cloud TSE"
    SWISSBIT_CLOUD = "swissbit_cloud", "Swissbit Cloud TSE"
    DIEBOLD_NIXDORF = "diebold_nixdorf", "Diebold Nixdorf (rede local)"
    SWISSBIT_USB = "swissbit_usb", "Swissbit USB (daemon local)"
    MOCK = "mock", "Simulador (dev/teste)"
    MOCK_ALWAYS_FAIL = "mock_always_fail", "Simulador com falha técnica (teste)"


class SiteFiscalState(models.Model):
    """
    Estado fiscal de um site (loja): configuração + contadores do Router.

    Regras:
      - Uma linha por (org_id, site_id); ausência de linha = site não configurado.
      - enabled=True exige device_type resolvível pela factory de dispositivos.
      - Alterado apenas por configure_site_fiscal (configuração) e
        record_transaction (contadores), sempre sob select_for_update.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    org_id = models.UUIDField(db_index=True)
    site_id = models.UUIDField()

    country = models.CharField(
        max_length=2,
        choices=FiscalCountry.choices,
        blank=True,
        default="",
        help_text="País cujo padrão de conformidade se aplica ao site.",
    )
    enabled = models.BooleanField(default=False)

    device_id = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Identificador do dispositivo de assinatura no provider (ex.: TSS id).",
    )
    device_type = models.CharField(
        max_length=30,
        choices=SigningDeviceType.choices,
        blank=True,
        default="",
    )
    country_settings = models.JSONField(
        default=dict,
        blank=True,
        help_text="Settings específicos do país/dispositivo (chave → valor texto).",
    )

    # Contadores do Router (atualizados a cada tentativa)
    transaction_count = models.PositiveBigIntegerField(default=0)
    last_transaction_at = models.DateTimeField(null=True, blank=True)
    last_error = models.TextField(null=True, blank=True)
    last_signature_counter = models.PositiveBigIntegerField(
        default=0,
        help_text="Último contador de assinatura confirmado (usado na reconciliação diária).",
    )

    version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "fiscal_site_state"
        verbose_name = "Estado fiscal do site"
        verbose_name_plural = "Estados fiscais dos sites"
        constraints = [
            models.UniqueConstraint(
                fields=["org_id", "site_id"],
                name="uniq_fiscal_site_state_org_site",
            ),
        ]

    def __str__(self):
        return f"{self.org_id}/{self.site_id} {self.country or '-'} enabled={self.enabled}"

    @property
    def is_configured(self) -> bool:
        return bool(self.country)
