from django.conf import settings
from django.core.management.base import BaseCommand

from services.booking_management import process_booking_timeouts


class Command(BaseCommand):
    help = "Cancel pending bookings that no ambulance operator accepted in time."

    def add_arguments(self, parser):
        parser.add_argument(
            "--timeout",
            type=int,
            default=settings.BOOKING_ACCEPT_TIMEOUT_SECONDS,
            help="Seconds a booking may stay pending before it is cancelled "
                 "(default: BOOKING_ACCEPT_TIMEOUT_SECONDS).",
        )

    def handle(self, *args, **options):
        timeout = options["timeout"]
        expired_count = process_booking_timeouts(timeout_seconds=timeout)

        self.stdout.write(
            self.style.SUCCESS(f"Expired {expired_count} pending booking(s).")
        )
