import uuid
from decimal import Decimal

import django.contrib.auth.models
import django.contrib.auth.validators
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

import marketplace.validators


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('email', models.EmailField(error_messages={'unique': 'A user with that email already exists.'}, help_text='Required. Enter a valid email address.', max_length=254, unique=True, verbose_name='email address')),
                ('user_type', models.CharField(choices=[('consumer', 'Consumer'), ('provider', 'Service Provider')], help_text='Required. Select whether you are a consumer or service provider.', max_length=10, verbose_name='user type')),
                ('is_verified', models.BooleanField(default=False, help_text='Indicates whether a service provider has been verified.', verbose_name='verified status')),
                ('avg_rating_as_provider', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='Average rating when acting as a service provider.', max_digits=3, validators=[django.core.validators.MinValueValidator(Decimal('0.00'), message='Rating cannot be negative.'), django.core.validators.MaxValueValidator(Decimal('5.00'), message='Rating cannot exceed 5.00.')], verbose_name='average rating as provider')),
                ('avg_rating_as_consumer', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='Average rating when acting as a consumer.', max_digits=3, validators=[django.core.validators.MinValueValidator(Decimal('0.00'), message='Rating cannot be negative.'), django.core.validators.MaxValueValidator(Decimal('5.00'), message='Rating cannot exceed 5.00.')], verbose_name='average rating as consumer')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['email'], name='user_email_idx'),
                    models.Index(fields=['user_type'], name='user_type_idx'),
                ],
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.CreateModel(
            name='Listing',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('service_name', models.CharField(max_length=200, verbose_name='service name')),
                ('description', models.TextField(blank=True, default='', verbose_name='description')),
                ('service_type', models.CharField(choices=[('delivery', 'Delivery'), ('courier', 'Courier'), ('drone', 'Drone')], default='delivery', max_length=20, verbose_name='service type')),
                ('base_price', models.DecimalField(decimal_places=2, help_text='Flat fee charged for every booking', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))], verbose_name='base price')),
                ('price_per_km', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=8, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))], verbose_name='price per km')),
                ('price_per_minute', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=8, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))], verbose_name='price per minute')),
                ('minimum_price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))], verbose_name='minimum price')),
                ('requires_pickup', models.BooleanField(default=True, help_text='Bookings must provide a pickup address', verbose_name='requires pickup')),
                ('requires_coordinates', models.BooleanField(default=False, help_text='Bookings must provide drop-off latitude and longitude', verbose_name='requires coordinates')),
                ('availability_status', models.BooleanField(default=True, verbose_name='availability status')),
                ('rating_average', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=3, validators=[django.core.validators.MinValueValidator(Decimal('0.00'), message='Rating cannot be negative.'), django.core.validators.MaxValueValidator(Decimal('5.00'), message='Rating cannot exceed 5.00.')], verbose_name='rating average')),
                ('total_reviews', models.PositiveIntegerField(default=0, verbose_name='total reviews')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('provider', models.ForeignKey(help_text='Provider offering this service', on_delete=django.db.models.deletion.PROTECT, related_name='listings', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'listing',
                'verbose_name_plural': 'listings',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['provider'], name='listing_provider_idx'),
                    models.Index(fields=['availability_status'], name='listing_available_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Booking',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('accepted', 'Accepted'), ('in_progress', 'In progress'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='pending', max_length=20, verbose_name='status')),
                ('payment_status', models.CharField(choices=[('pending', 'Pending'), ('authorized', 'Authorized'), ('paid', 'Paid'), ('failed', 'Failed'), ('refunded', 'Refunded'), ('partially_refunded', 'Partially refunded')], default='pending', max_length=20, verbose_name='payment status')),
                ('scheduled_at', models.DateTimeField(verbose_name='scheduled at')),
                ('pickup_location', models.CharField(blank=True, default='', max_length=300, verbose_name='pickup location')),
                ('dropoff_location', models.CharField(max_length=300, verbose_name='dropoff location')),
                ('pickup_latitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True, validators=[marketplace.validators.validate_latitude])),
                ('pickup_longitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True, validators=[marketplace.validators.validate_longitude])),
                ('dropoff_latitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True, validators=[marketplace.validators.validate_latitude])),
                ('dropoff_longitude', models.DecimalField(blank=True, decimal_places=6, max_digits=9, null=True, validators=[marketplace.validators.validate_longitude])),
                ('special_instructions', models.TextField(blank=True, default='', verbose_name='special instructions')),
                ('distance_km', models.DecimalField(decimal_places=3, default=Decimal('0.000'), max_digits=8, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('duration_minutes', models.PositiveIntegerField(default=0)),
                ('price_total', models.DecimalField(decimal_places=2, help_text='Fixed at creation, never recomputed', max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.00'))], verbose_name='total price')),
                ('refunded_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), help_text='Sum of confirmed refunds', max_digits=10, verbose_name='refunded amount')),
                ('payment_reference', models.CharField(blank=True, help_text='Gateway transaction id, immutable once set', max_length=128, null=True, unique=True, verbose_name='payment reference')),
                ('authorization_requested_at', models.DateTimeField(blank=True, null=True)),
                ('capture_requested_at', models.DateTimeField(blank=True, null=True)),
                ('capture_attempt', models.PositiveIntegerField(default=1, help_text='Sequence number of the capture request; advanced when the gateway rejects a capture', verbose_name='capture attempt')),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='updated at')),
                ('consumer', models.ForeignKey(help_text='Consumer who requested the booking', on_delete=django.db.models.deletion.PROTECT, related_name='consumer_bookings', to=settings.AUTH_USER_MODEL)),
                ('provider', models.ForeignKey(help_text='Provider fulfilling the booking', on_delete=django.db.models.deletion.PROTECT, related_name='provider_bookings', to=settings.AUTH_USER_MODEL)),
                ('listing', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='bookings', to='marketplace.listing')),
            ],
            options={
                'verbose_name': 'booking',
                'verbose_name_plural': 'bookings',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['consumer'], name='booking_consumer_idx'),
                    models.Index(fields=['provider'], name='booking_provider_idx'),
                    models.Index(fields=['status'], name='booking_status_idx'),
                    models.Index(fields=['payment_status', 'authorization_requested_at'], name='booking_pending_auth_idx'),
                    models.Index(fields=['scheduled_at'], name='booking_scheduled_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Refund',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=10, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('idempotency_key', models.CharField(max_length=128, unique=True)),
                ('gateway_reference', models.CharField(blank=True, max_length=128, null=True, unique=True)),
                ('status', models.CharField(choices=[('requested', 'Requested'), ('succeeded', 'Succeeded'), ('failed', 'Failed')], default='requested', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('confirmed_at', models.DateTimeField(blank=True, null=True)),
                ('booking', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='refunds', to='marketplace.booking')),
                ('requested_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='refunds_requested', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['created_at'],
                'indexes': [
                    models.Index(fields=['booking', 'status'], name='refund_booking_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Review',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('rating', models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1, message='Rating must be at least 1.'), django.core.validators.MaxValueValidator(5, message='Rating must be at most 5.')], verbose_name='rating')),
                ('comment', models.TextField(blank=True, default='', verbose_name='comment')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='created at')),
                ('booking', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='reviews', to='marketplace.booking')),
                ('reviewee', models.ForeignKey(help_text='User receiving the review', on_delete=django.db.models.deletion.PROTECT, related_name='reviews_received', to=settings.AUTH_USER_MODEL)),
                ('reviewer', models.ForeignKey(help_text='User writing the review', on_delete=django.db.models.deletion.PROTECT, related_name='reviews_given', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'review',
                'verbose_name_plural': 'reviews',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['reviewee'], name='review_reviewee_idx'),
                    models.Index(fields=['rating'], name='review_rating_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('booking', 'reviewer'), name='unique_review_per_booking_reviewer'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ProcessedWebhookEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event_id', models.CharField(max_length=128, unique=True)),
                ('event_type', models.CharField(max_length=64)),
                ('outcome', models.CharField(choices=[('applied', 'Applied'), ('noop', 'No-op'), ('ignored', 'Ignored')], max_length=16)),
                ('processed_at', models.DateTimeField(auto_now_add=True)),
                ('booking', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='webhook_events', to='marketplace.booking')),
            ],
            options={
                'ordering': ['-processed_at'],
            },
        ),
    ]
