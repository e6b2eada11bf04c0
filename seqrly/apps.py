from django.apps import AppConfig


class SeqrlyConfig(AppConfig):

    name = "seqrly"
    verbose_name = "Seqrly OpenID"
    default_auto_field = "django.db.models.AutoField"

    def ready(self):
        from seqrly.conf import config
        from seqrly.utils import install_fetcher

        install_fetcher(config.FETCH_TIMEOUT)
