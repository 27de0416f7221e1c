# fiscal/urls.py

from django.urls import path

from fiscal.views import job_views, site_fiscal_views, zreport_views

app_name = "fiscal"

SITE = "orgs/<uuid:org_id>/sites/<uuid:site_id>/"

urlpatterns = [
    path("countries/", site_fiscal_views.list_countries_view, name="countries"),

    # configuração / estado fiscal do site
    path(f"{SITE}configuration/", site_fiscal_views.site_configuration_view, name="site-configuration"),
    path(
        f"{SITE}configuration/validate/",
        site_fiscal_views.site_configuration_validate_view,
        name="site-configuration-validate",
    ),
    path(f"{SITE}health/", site_fiscal_views.site_health_view, name="site-health"),
    path(f"{SITE}features/", site_fiscal_views.site_features_view, name="site-features"),

    # operações no dispositivo
    path(f"{SITE}transactions/", site_fiscal_views.site_record_transaction_view, name="site-transactions"),
    path(f"{SITE}export/", site_fiscal_views.site_audit_export_view, name="site-export"),

    # jobs manuais
    path(f"{SITE}daily-close/", job_views.site_daily_close_view, name="site-daily-close"),
    path(f"{SITE}archive/", job_views.site_archive_view, name="site-archive"),

    # z-report
    path(f"{SITE}z-report/", zreport_views.site_zreport_generate_view, name="site-zreport-generate"),
    path(f"{SITE}z-report/latest/", zreport_views.site_zreport_latest_view, name="site-zreport-latest"),
    path(
        f"{SITE}z-report/<int:report_number>/",
        zreport_views.site_zreport_detail_view,
        name="site-zreport-detail",
    ),
    path(f"{SITE}z-reports/", zreport_views.site_zreport_list_view, name="site-zreport-list"),

    # agenda de jobs da organização
    path("orgs/<uuid:org_id>/jobs/", job_views.org_job_configs_view, name="org-jobs"),
    path("orgs/<uuid:org_id>/jobs/history/", job_views.job_history_view, name="org-job-history"),
    path("orgs/<uuid:org_id>/jobs/<uuid:site_id>/", job_views.site_job_config_view, name="site-job-config"),
    path(
        "orgs/<uuid:org_id>/certificates/expiry/",
        job_views.certificate_expiry_view,
        name="org-certificate-expiry",
    ),
]
