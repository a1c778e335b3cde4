from django.contrib import admin
from .models import Category, Product


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ('name', 'date_added')
    search_fields = ('name',)


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ('name', 'category', 'discounted_price', 'stock_quantity', 'is_active', 'date_added')
    list_filter = ('category', 'is_active')
    search_fields = ('name',)
    ordering = ('-date_added',)

    fieldsets = (
        ('Product Details', {
            'fields': ('name', 'slug', 'category', 'description', 'is_active')
        }),
        ('Pricing', {
            'fields': ('real_price', 'discounted_price')
        }),
        # Stock is read-only here: it moves only through the inventory ledger
        ('Inventory & Shipping', {
            'fields': ('stock_quantity', 'weight_kg')
        }),
        ('Date Information', {
            'fields': ('date_added', 'updated_at'),
        }),
    )

    readonly_fields = ('date_added', 'updated_at')

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            return self.readonly_fields + ('stock_quantity',)
        return self.readonly_fields
