# shared/common/mixins.py
"""
Reusable Model Mixins
"""

import uuid

from django.db import models


class UUIDPrimaryKeyMixin(models.Model):
    """
    Mixin that provides UUID as primary key instead of auto-increment integer.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record"
    )

    class Meta:
        abstract = True


class TimestampMixin(models.Model):
    """
    Mixin that provides created_at and updated_at timestamp fields.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="When this record was created"
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When this record was last updated"
    )

    class Meta:
        abstract = True


class RatingAggregateMixin(models.Model):
    """
    Running average of 1-5 star ratings received by a record.
    """

    rating_average = models.DecimalField(
        max_digits=3,
        decimal_places=2,
        default=0,
        help_text="Average of all ratings received"
    )
    rating_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of ratings received"
    )

    class Meta:
        abstract = True

    def add_rating(self, rating: int):
        """Fold a new rating into the running average and persist it."""
        from decimal import Decimal, ROUND_HALF_UP

        total = self.rating_average * self.rating_count + rating
        self.rating_count += 1
        self.rating_average = (Decimal(total) / self.rating_count).quantize(
            Decimal('0.01'), rounding=ROUND_HALF_UP
        )
        self.save(update_fields=['rating_average', 'rating_count'])
