# Recalculate Ratings Management Command
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from marketplace.models import Listing, User
from marketplace.ratings import compute_listing_rating, compute_user_ratings


class Command(BaseCommand):
    help = 'Rebuilds listing and user rating projections from the review table.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report differences without saving changes to the database.',
        )
        parser.add_argument(
            '--listings-only',
            action='store_true',
            help='Recalculate only listing ratings.',
        )
        parser.add_argument(
            '--users-only',
            action='store_true',
            help='Recalculate only user ratings.',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=1000,
            help='Batch size for bulk processing.',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        listings_only = options['listings_only']
        users_only = options['users_only']
        batch_size = options['batch_size']

        if listings_only and users_only:
            raise CommandError('--listings-only and --users-only are mutually exclusive.')
        if batch_size < 1:
            raise CommandError('--batch-size must be a positive integer.')

        if not users_only:
            self.recalculate_listings(dry_run, batch_size)

        if not listings_only:
            self.recalculate_users(dry_run, batch_size)

        if dry_run:
            self.stdout.write(self.style.SUCCESS('Dry run completed. No changes saved.'))
        else:
            self.stdout.write(self.style.SUCCESS('Recalculation completed successfully.'))

    def _flush(self, model, updates, fields, dry_run):
        if updates and not dry_run:
            with transaction.atomic():
                model.objects.bulk_update(updates, fields)

    def recalculate_listings(self, dry_run, batch_size):
        self.stdout.write('Recalculating listing ratings...')
        fields = ['rating_average', 'total_reviews']
        updates = []
        count = 0
        changed = 0

        for listing in Listing.objects.order_by('pk').iterator(chunk_size=batch_size):
            new_avg, new_total = compute_listing_rating(listing)

            if listing.rating_average != new_avg or listing.total_reviews != new_total:
                changed += 1
                if dry_run:
                    self.stdout.write(
                        f'  [DRY-RUN] Listing {listing.id} ({listing.service_name}): '
                        f'Rating {listing.rating_average} -> {new_avg}, '
                        f'Count {listing.total_reviews} -> {new_total}'
                    )
                listing.rating_average = new_avg
                listing.total_reviews = new_total
                updates.append(listing)

            if len(updates) >= batch_size:
                self._flush(Listing, updates, fields, dry_run)
                updates = []

            count += 1
            if count % 100 == 0:
                self.stdout.write(f'Processed {count} listings...')

        self._flush(Listing, updates, fields, dry_run)
        self.stdout.write(f'Processed {count} listings total, {changed} changed.')

    def recalculate_users(self, dry_run, batch_size):
        self.stdout.write('Recalculating user ratings...')
        fields = ['avg_rating_as_provider', 'avg_rating_as_consumer']
        updates = []
        count = 0
        changed = 0

        for user in User.objects.order_by('pk').iterator(chunk_size=batch_size):
            as_provider, as_consumer = compute_user_ratings(user)

            if user.avg_rating_as_provider != as_provider or user.avg_rating_as_consumer != as_consumer:
                changed += 1
                if dry_run:
                    self.stdout.write(
                        f'  [DRY-RUN] User {user.id}: '
                        f'Provider {user.avg_rating_as_provider} -> {as_provider}, '
                        f'Consumer {user.avg_rating_as_consumer} -> {as_consumer}'
                    )
                user.avg_rating_as_provider = as_provider
                user.avg_rating_as_consumer = as_consumer
                updates.append(user)

            if len(updates) >= batch_size:
                self._flush(User, updates, fields, dry_run)
                updates = []

            count += 1
            if count % 100 == 0:
                self.stdout.write(f'Processed {count} users...')

        self._flush(User, updates, fields, dry_run)
        self.stdout.write(f'Processed {count} users total, {changed} changed.')
