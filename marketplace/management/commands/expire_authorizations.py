# Expire Authorizations Management Command
from django.conf import settings
from django.core.management.base import BaseCommand

from marketplace.escrow import EscrowCoordinator


class Command(BaseCommand):
    help = (
        'Cancels bookings whose payment authorization was not confirmed within '
        'PAYMENT_AUTHORIZATION_TIMEOUT. Intended to run from cron every few minutes.'
    )

    def handle(self, *args, **options):
        timeout = settings.PAYMENT_AUTHORIZATION_TIMEOUT
        self.stdout.write(f'Expiring authorizations older than {timeout}...')

        expired = EscrowCoordinator().expire_stale_authorizations()

        for booking_id in expired:
            self.stdout.write(f'  Expired booking {booking_id}')

        self.stdout.write(self.style.SUCCESS(f'Expired {len(expired)} booking(s).'))
