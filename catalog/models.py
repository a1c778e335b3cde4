# catalog/models.py
import re

from django.conf import settings
from django.db import models
from django.utils.text import slugify


class Category(models.Model):
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True, null=True)
    date_added = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = "categories"

    def __str__(self):
        return self.name


class Product(models.Model):
    category = models.ForeignKey(Category, on_delete=models.PROTECT, related_name='products')
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=200, unique=True, blank=True)
    real_price = models.DecimalField(max_digits=10, decimal_places=2)
    discounted_price = models.DecimalField(max_digits=10, decimal_places=2)
    stock_quantity = models.PositiveIntegerField(default=0)
    weight_kg = models.DecimalField(
        max_digits=6, decimal_places=3, blank=True, null=True,
        help_text="Per-unit shipping weight; DEFAULT_ITEM_WEIGHT_KG is used when empty",
    )
    is_active = models.BooleanField(default=True, db_index=True)
    description = models.TextField(blank=True, null=True)
    date_added = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=models.Q(stock_quantity__gte=0), name='product_stock_non_negative'),
        ]

    def save(self, *args, **kwargs):
        if not self.slug:
            clean_name = re.sub(r'[^\w\s-]', '', self.name)
            clean_name = re.sub(r'\s+', ' ', clean_name).strip()
            base_slug = slugify(clean_name) or "product"

            slug = base_slug
            counter = 1
            while self.__class__.objects.filter(slug=slug).exists():
                slug = f"{base_slug}-{counter}"
                counter += 1

            self.slug = slug
        super().save(*args, **kwargs)

    @property
    def shipping_weight_kg(self):
        """Per-unit weight used for shipping quotes"""
        if self.weight_kg:
            return self.weight_kg
        return settings.DEFAULT_ITEM_WEIGHT_KG

    def __str__(self):
        return f"{self.name} ({self.category})"
