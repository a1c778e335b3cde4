import uuid
from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


ORDER_STATUS_CHOICES = [
    ('PENDING', 'Pending Payment'),
    ('PAID', 'Paid'),
    ('SHIPPED', 'Shipped'),
    ('DELIVERED', 'Delivered'),
    ('CANCELLED', 'Cancelled'),
]

PAYMENT_STATUS_CHOICES = [
    ('PENDING', 'Pending'),
    ('SUCCESS', 'Success'),
    ('FAILED', 'Failed'),
    ('REFUNDED', 'Refunded'),
    ('PARTIALLY_REFUNDED', 'Partially Refunded'),
]

SHIPMENT_STATUS_CHOICES = [
    ('PENDING', 'Pending'),
    ('PROCESSING', 'Processing'),
    ('DISPATCHED', 'Dispatched'),
    ('IN_TRANSIT', 'In Transit'),
    ('OUT_FOR_DELIVERY', 'Out For Delivery'),
    ('DELIVERED', 'Delivered'),
    ('FAILED', 'Failed'),
    ('CANCELLED', 'Cancelled'),
    ('RTO_INITIATED', 'RTO Initiated'),
    ('RTO_DELIVERED', 'RTO Delivered'),
]

REFUND_STATUS_CHOICES = [
    ('REQUESTED', 'Requested'),
    ('PENDING_ADMIN_APPROVAL', 'Pending Admin Approval'),
    ('APPROVED', 'Approved'),
    ('REJECTED', 'Rejected'),
    ('PROCESSING', 'Processing'),
    ('COMPLETED', 'Completed'),
    ('FAILED', 'Failed'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('catalog', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('subtotal_amount', models.DecimalField(decimal_places=2, max_digits=10)),
                ('shipping_cost', models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ('total_amount', models.DecimalField(decimal_places=2, max_digits=10)),
                ('status', models.CharField(choices=ORDER_STATUS_CHOICES, db_index=True, default='PENDING', max_length=20)),
                ('delivery_tracking_id', models.CharField(blank=True, max_length=100, null=True)),
                ('shipping_address_snapshot', models.JSONField()),
                ('pickup_pincode', models.CharField(blank=True, max_length=10, null=True)),
                ('delivery_pincode', models.CharField(blank=True, max_length=10, null=True)),
                ('weight_kg', models.DecimalField(blank=True, decimal_places=3, max_digits=7, null=True)),
                ('length_cm', models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True)),
                ('breadth_cm', models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True)),
                ('height_cm', models.DecimalField(blank=True, decimal_places=2, max_digits=6, null=True)),
                ('customer_notified', models.BooleanField(db_index=True, default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='orders', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['user', 'created_at'], name='order_user_created_idx'),
                    models.Index(fields=['status', 'created_at'], name='order_status_created_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='OrderItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200)),
                ('quantity', models.PositiveIntegerField()),
                ('price_at_purchase', models.DecimalField(decimal_places=2, max_digits=10)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='orders.order')),
                ('product', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='order_items', to='catalog.product')),
            ],
        ),
        migrations.CreateModel(
            name='Payment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('external_order_id', models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ('external_payment_id', models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ('external_signature', models.CharField(blank=True, max_length=255, null=True)),
                ('idempotency_key', models.CharField(max_length=255, unique=True)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=10)),
                ('amount_refunded', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=10)),
                ('status', models.CharField(choices=PAYMENT_STATUS_CHOICES, db_index=True, default='PENDING', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('order', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='payment', to='orders.order')),
            ],
            options={
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(('amount_refunded__gte', 0), ('amount_refunded__lte', models.F('amount'))),
                        name='payment_refund_within_amount',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='ShippingDetail',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('external_order_id', models.CharField(blank=True, max_length=100, null=True)),
                ('external_shipment_id', models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ('awb_code', models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ('courier_name', models.CharField(blank=True, max_length=200, null=True)),
                ('courier_phone', models.CharField(blank=True, max_length=20, null=True)),
                ('courier_email', models.EmailField(blank=True, max_length=254, null=True)),
                ('tracking_url', models.URLField(blank=True, max_length=500, null=True)),
                ('estimated_delivery_date', models.DateTimeField(blank=True, null=True)),
                ('current_status', models.CharField(choices=SHIPMENT_STATUS_CHOICES, db_index=True, default='PENDING', max_length=20)),
                ('status_history', models.JSONField(blank=True, default=list)),
                ('pickup_scheduled_date', models.DateTimeField(blank=True, null=True)),
                ('dispatched_date', models.DateTimeField(blank=True, null=True)),
                ('delivered_date', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('order', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='shipping_detail', to='orders.order')),
            ],
        ),
        migrations.CreateModel(
            name='Refund',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('external_refund_id', models.CharField(blank=True, max_length=100, null=True, unique=True)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=10)),
                ('reason', models.TextField()),
                ('user_note', models.TextField(blank=True, null=True)),
                ('admin_note', models.TextField(blank=True, null=True)),
                ('status', models.CharField(choices=REFUND_STATUS_CHOICES, db_index=True, default='REQUESTED', max_length=30)),
                ('requested_at', models.DateTimeField(auto_now_add=True)),
                ('decided_at', models.DateTimeField(blank=True, null=True)),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('decided_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='decided_refunds', to=settings.AUTH_USER_MODEL)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='refunds', to='orders.order')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='refunds', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'constraints': [
                    models.UniqueConstraint(
                        condition=models.Q(('status__in', ['REQUESTED', 'PENDING_ADMIN_APPROVAL', 'APPROVED', 'PROCESSING'])),
                        fields=('order',),
                        name='unique_active_refund_per_order',
                    ),
                    models.CheckConstraint(condition=models.Q(('amount__gt', 0)), name='refund_amount_positive'),
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(('status', 'REJECTED'), _negated=True),
                            models.Q(('admin_note__isnull', False), models.Q(('admin_note', ''), _negated=True)),
                            _connector='OR',
                        ),
                        name='rejected_refund_has_admin_note',
                    ),
                ],
            },
        ),
    ]
