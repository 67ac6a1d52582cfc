from django.db import models


class PaymentLog(models.Model):
    """Immutable record of a confirmed payment.

    Rows are only ever inserted, in the same transaction that moves the order
    to PAID. Updating or deleting an existing row raises.
    """

    order = models.ForeignKey("orders.OrderModel", related_name="payment_logs", on_delete=models.PROTECT)
    payment_method = models.CharField(max_length=32)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    payment_id = models.CharField(max_length=128, null=True, blank=True)
    paid_at = models.DateTimeField()
    payment_notes = models.TextField(null=True, blank=True)
    transaction_reference = models.CharField(max_length=128, null=True, blank=True)
    bank_name = models.CharField(max_length=128, null=True, blank=True)
    account_last_four = models.CharField(max_length=4, null=True, blank=True)
    admin_id = models.BigIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "payment_logs"
        ordering = ["-created_at", "-id"]

    def save(self, *args, **kwargs):
        if self.pk is not None and not kwargs.get("force_insert"):
            raise RuntimeError("PAYMENT_LOG_IMMUTABLE")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise RuntimeError("PAYMENT_LOG_IMMUTABLE")
