from django.db import models


class Product(models.Model):
    """Sellable product and its on-hand stock.

    ``stock`` is written only through ``apps.inventory.ledger.StockLedger``;
    the check constraint backs the ledger's conditional decrement.
    """

    class Status(models.TextChoices):
        ACTIVE = "ACTIVE"
        INACTIVE = "INACTIVE"

    sku = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    stock = models.IntegerField(default=0)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(condition=models.Q(stock__gte=0), name="products_stock_non_negative"),
        ]

    def __str__(self):
        return f"{self.sku} ({self.stock})"

    @property
    def is_active(self) -> bool:
        return self.status == self.Status.ACTIVE
