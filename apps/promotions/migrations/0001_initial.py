# Generated migration for promotions models

import uuid

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

import apps.promotions.models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='DiscountRule',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(help_text='Display name', max_length=200)),
                ('description', models.TextField(blank=True)),
                ('category', models.CharField(choices=[('coupon', 'Coupon / Subscription'), ('telecom', 'Telecom Membership'), ('payment_event', 'Payment Event'), ('voucher', 'Voucher'), ('payment_instant', 'Payment Discount (standalone)'), ('payment_compound', 'Payment Discount (compound)'), ('promotion', 'Promotion (buy N get M)')], help_text='Discount category', max_length=30)),
                ('value_type', models.CharField(choices=[('percentage', 'Percentage'), ('fixed_amount', 'Fixed Amount'), ('tiered_amount', 'Tiered Amount'), ('voucher_amount', 'Voucher Amount'), ('buy_n_get_m', 'Buy N Get M')], help_text='How the discount is computed', max_length=30)),
                ('config', models.JSONField(blank=True, default=dict, help_text='Value-type specific parameters')),
                ('applicable_products', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('applicable_categories', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('applicable_brands', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('required_payment_methods', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('cannot_combine_with_categories', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('cannot_combine_with_ids', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('cannot_combine_with_promotion_gift_types', models.JSONField(blank=True, default=list, help_text='Gift selection types of promotions this rule never combines with', validators=[apps.promotions.models.validate_string_list])),
                ('requires_discount_id', models.UUIDField(blank=True, help_text='Another rule that must be selected alongside this one', null=True)),
                ('min_purchase_amount', models.PositiveBigIntegerField(blank=True, help_text='Minimum cart total before the rule applies', null=True)),
                ('min_quantity', models.PositiveIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1)])),
                ('max_discount_amount', models.PositiveBigIntegerField(blank=True, null=True)),
                ('max_discount_per_item', models.PositiveBigIntegerField(blank=True, null=True)),
                ('valid_from', models.DateTimeField(default=django.utils.timezone.now)),
                ('valid_to', models.DateTimeField(blank=True, null=True)),
                ('priority', models.IntegerField(default=0, help_text='Lower values fold first within a category')),
                ('is_active', models.BooleanField(default=True)),
                ('created_by', models.CharField(blank=True, max_length=128)),
                ('last_modified_by', models.CharField(blank=True, max_length=128)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Discount Rule',
                'verbose_name_plural': 'Discount Rules',
                'db_table': 'discount_rules',
                'ordering': ('priority', 'created_at'),
                'indexes': [
                    models.Index(fields=['category', 'is_active'], name='discount_ru_categor_5b1e0a_idx'),
                    models.Index(fields=['valid_from', 'valid_to'], name='discount_ru_valid_f_8c2d41_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Promotion',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=200)),
                ('description', models.TextField(blank=True)),
                ('promotion_type', models.CharField(choices=[('1+1', 'Buy 1 Get 1'), ('2+1', 'Buy 2 Get 1'), ('3+1', 'Buy 3 Get 1'), ('custom', 'Custom')], default='1+1', max_length=10)),
                ('buy_quantity', models.PositiveIntegerField(default=1, validators=[django.core.validators.MinValueValidator(1)])),
                ('get_quantity', models.PositiveIntegerField(default=1, validators=[django.core.validators.MinValueValidator(1)])),
                ('applicable_type', models.CharField(choices=[('products', 'Specific Products'), ('categories', 'Product Categories'), ('brands', 'Brands')], default='products', max_length=20)),
                ('applicable_products', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('applicable_categories', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('applicable_brands', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('gift_selection_type', models.CharField(choices=[('same', 'Same Product'), ('cross', 'Cross Product'), ('combo', 'Combo Pairing')], default='same', max_length=10)),
                ('gift_products', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('gift_categories', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('gift_brands', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('gift_constraints', models.JSONField(blank=True, default=dict, help_text='max_gift_price, must_be_cheaper_than_purchased, must_be_same_product')),
                ('constraints', models.JSONField(blank=True, default=dict, help_text='max_applications_per_cart, min_purchase_amount, excluded_products')),
                ('valid_from', models.DateTimeField(default=django.utils.timezone.now)),
                ('valid_to', models.DateTimeField(blank=True, null=True)),
                ('status', models.CharField(choices=[('active', 'Active'), ('expired', 'Expired'), ('archived', 'Archived'), ('merged', 'Merged')], default='active', max_length=20)),
                ('is_active', models.BooleanField(default=True)),
                ('priority', models.IntegerField(default=0)),
                ('source_url', models.URLField(blank=True)),
                ('verification_status', models.CharField(choices=[('unverified', 'Unverified'), ('pending', 'Pending'), ('verified', 'Verified'), ('disputed', 'Disputed')], default='unverified', max_length=20)),
                ('verification_count', models.PositiveIntegerField(default=0)),
                ('dispute_count', models.PositiveIntegerField(default=0)),
                ('verified_by', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('disputed_by', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('admin_verified_by', models.CharField(blank=True, max_length=128)),
                ('merged_from', models.JSONField(blank=True, default=list, validators=[apps.promotions.models.validate_string_list])),
                ('merged_at', models.DateTimeField(blank=True, null=True)),
                ('merged_by', models.CharField(blank=True, max_length=128)),
                ('created_by', models.CharField(blank=True, max_length=128)),
                ('last_modified_by', models.CharField(blank=True, max_length=128)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('merged_into', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='absorbed_promotions', to='promotions.promotion')),
            ],
            options={
                'verbose_name': 'Promotion',
                'verbose_name_plural': 'Promotions',
                'db_table': 'promotions',
                'ordering': ('-priority', '-verification_count', '-created_at'),
                'indexes': [
                    models.Index(fields=['status', 'is_active'], name='promotions_status_3f7a9c_idx'),
                    models.Index(fields=['verification_status'], name='promotions_verific_4e21b7_idx'),
                    models.Index(fields=['promotion_type', 'valid_from', 'valid_to'], name='promotions_promoti_91c0d2_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='PromotionIndex',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('barcode', models.CharField(max_length=64, unique=True)),
                ('promotion_ids', models.JSONField(default=list, help_text='Sorted promotion ids for this barcode')),
                ('last_updated', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Promotion Index Entry',
                'verbose_name_plural': 'Promotion Index',
                'db_table': 'promotion_index',
                'ordering': ('barcode',),
            },
        ),
        migrations.CreateModel(
            name='ModificationHistory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('entity_type', models.CharField(choices=[('promotion', 'Promotion'), ('discount_rule', 'Discount Rule')], max_length=20)),
                ('entity_id', models.UUIDField()),
                ('action', models.CharField(choices=[('create', 'Created'), ('update', 'Updated'), ('delete', 'Deleted'), ('merge', 'Created by merge'), ('merged', 'Merged into another promotion'), ('merge_individual', 'Absorbed other promotions'), ('verify', 'Verified by user'), ('dispute', 'Disputed by user'), ('admin_verify', 'Verified by administrator'), ('expire', 'Expired')], max_length=20)),
                ('changes', models.JSONField(blank=True, default=dict)),
                ('comment', models.TextField(blank=True)),
                ('modified_by', models.CharField(max_length=128)),
                ('modified_at', models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                'verbose_name': 'Modification History Entry',
                'verbose_name_plural': 'Modification History',
                'db_table': 'promotion_modification_history',
                'ordering': ('modified_at', 'id'),
                'indexes': [
                    models.Index(fields=['entity_type', 'entity_id', 'modified_at'], name='promotion_m_entity__7d3e55_idx'),
                    models.Index(fields=['modified_by'], name='promotion_m_modifie_b2a614_idx'),
                ],
            },
        ),
    ]
