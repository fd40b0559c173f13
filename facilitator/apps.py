from django.apps import AppConfig
from loguru import logger


class FacilitatorConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'facilitator'

    facilitator = None

    def ready(self):
        from facilitator.services import X402FacilitatorError, build_facilitator

        try:
            self.facilitator = build_facilitator()
        except X402FacilitatorError as exc:
            logger.error('x402 facilitator misconfiguration: {}', exc)
